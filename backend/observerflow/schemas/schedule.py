from __future__ import annotations

import re
from datetime import date
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")


class Semester(str, Enum):
    first = "First"
    second = "Second"
    summer = "Summer"


class ExamType(str, Enum):
    first = "First"
    second = "Second"
    final = "Final"


class AssignmentStatus(str, Enum):
    not_assigned = "Not Assigned"
    partially_assigned = "Partially Assigned"
    fully_assigned = "Fully Assigned"


def parse_academic_year(value: str) -> tuple[int, int]:
    match = ACADEMIC_YEAR_PATTERN.match((value or "").strip())
    if not match:
        raise ValueError("Academic year must be in format YYYY-YYYY")
    first, second = int(match.group(1)), int(match.group(2))
    if second != first + 1:
        raise ValueError("Invalid academic year range. Second year must be the year after the first year")
    return first, second


def derive_assignment_status(assigned_exams: int, total_exams: int) -> AssignmentStatus:
    if assigned_exams < 0 or total_exams < 0:
        raise ValueError("Exam counts cannot be negative")
    if assigned_exams > total_exams:
        raise ValueError("assigned_exams cannot exceed total_exams")
    if assigned_exams == 0:
        return AssignmentStatus.not_assigned
    if assigned_exams == total_exams:
        return AssignmentStatus.fully_assigned
    return AssignmentStatus.partially_assigned


def coerce_wire_date(value):
    # The exam service serializes DATE columns as midnight timestamps.
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


def is_leap_day(value: date) -> bool:
    return value.month == 2 and value.day == 29


class ScheduleAssignmentState(BaseModel):
    total_exams: int = Field(ge=0, alias="totalExams")
    assigned_exams: int = Field(ge=0, alias="assignedExams")
    assignment_status: AssignmentStatus | None = Field(default=None, alias="assignmentStatus")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def validate_counts(self) -> "ScheduleAssignmentState":
        # The service-reported status is advisory; ours is derived from the counts.
        self.assignment_status = derive_assignment_status(self.assigned_exams, self.total_exams)
        return self


class Schedule(BaseModel):
    schedule_id: str = Field(
        validation_alias=AliasChoices("scheduleId", "uploadId", "schedule_id"),
        serialization_alias="scheduleId",
    )
    file_name: str | None = Field(default=None, validation_alias=AliasChoices("fileName", "file_name"), serialization_alias="fileName")
    academic_year: str = Field(validation_alias=AliasChoices("academicYear", "academic_year"), serialization_alias="academicYear")
    semester: Semester
    exam_type: ExamType = Field(validation_alias=AliasChoices("examType", "exam_type"), serialization_alias="examType")
    total_exams: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("totalExams", "examCount", "total_exams"),
        serialization_alias="totalExams",
    )
    assigned_exams: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("assignedExams", "assigned_exams"),
        serialization_alias="assignedExams",
    )

    @field_validator("schedule_id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)

    @field_validator("academic_year")
    @classmethod
    def validate_academic_year(cls, value: str) -> str:
        parse_academic_year(value)
        return value.strip()

    @model_validator(mode="after")
    def validate_counts(self) -> "Schedule":
        if self.assigned_exams > self.total_exams:
            raise ValueError("assigned_exams cannot exceed total_exams")
        return self

    @property
    def assignment_status(self) -> AssignmentStatus:
        return derive_assignment_status(self.assigned_exams, self.total_exams)

    @property
    def unassigned_exams(self) -> int:
        return self.total_exams - self.assigned_exams


class Exam(BaseModel):
    exam_id: str = Field(validation_alias=AliasChoices("examId", "examid", "exam_id"), serialization_alias="examId")
    course_name: str = Field(
        default="",
        validation_alias=AliasChoices("courseName", "coursename", "course_name"),
        serialization_alias="courseName",
    )
    exam_name: str = Field(validation_alias=AliasChoices("examName", "examname", "exam_name"), serialization_alias="examName")
    exam_date: date = Field(validation_alias=AliasChoices("examDate", "examdate", "exam_date"), serialization_alias="examDate")
    start_time: str | None = Field(
        default=None,
        validation_alias=AliasChoices("startTime", "starttime", "start_time"),
        serialization_alias="startTime",
    )
    end_time: str | None = Field(
        default=None,
        validation_alias=AliasChoices("endTime", "endtime", "end_time"),
        serialization_alias="endTime",
    )
    room: str | None = Field(default=None, validation_alias=AliasChoices("roomNum", "room", "roomnum"))
    student_count: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("numOfStudents", "studentCount", "numofstudents", "student_count"),
        serialization_alias="studentCount",
    )
    head_observer: str | None = Field(
        default=None,
        validation_alias=AliasChoices("headObserver", "head", "head_observer"),
        serialization_alias="headObserver",
    )
    secretary_observer: str | None = Field(
        default=None,
        validation_alias=AliasChoices("secretary", "secretaryObserver", "secretary_observer"),
        serialization_alias="secretary",
    )

    @field_validator("exam_id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)

    @field_validator("exam_date", mode="before")
    @classmethod
    def strip_time_component(cls, value):
        return coerce_wire_date(value)

    @property
    def is_leap_year_date(self) -> bool:
        return is_leap_day(self.exam_date)

    @property
    def is_fully_staffed(self) -> bool:
        return bool(self.head_observer) and bool(self.secretary_observer)


class ScheduleCoverage(BaseModel):
    schedule: Schedule
    assignment_status: AssignmentStatus
    unassigned_exams: int
    coverage_percent: float
    active_run_id: str | None = None


class ExamRow(BaseModel):
    exam: Exam
    is_leap_year_date: bool
    head_observer: str
    secretary_observer: str
