from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from observerflow.schemas.schedule import ExamType, Semester, coerce_wire_date, is_leap_day


class EditState(str, Enum):
    editing = "Editing"
    checking = "Checking"
    needs_confirmation = "NeedsConfirmation"
    confirmed = "Confirmed"
    direct_apply = "DirectApply"
    conflict = "Conflict"
    aborted = "Aborted"
    closed = "Closed"


class EditEventStatus(str, Enum):
    needs_confirmation = "NeedsConfirmation"
    applied = "Applied"
    conflict = "Conflict"
    validation_error = "ValidationError"


class ScheduleEditProposal(BaseModel):
    academic_year: str = Field(alias="academicYear", min_length=1, max_length=20)
    semester: Semester
    exam_type: ExamType = Field(alias="examType")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("academic_year")
    @classmethod
    def strip_year(cls, value: str) -> str:
        return value.strip()


class AffectedExam(BaseModel):
    exam_id: str = Field(validation_alias=AliasChoices("examId", "examid", "exam_id"), serialization_alias="examId")
    course_name: str = Field(
        default="",
        validation_alias=AliasChoices("courseName", "coursename", "course_name"),
        serialization_alias="courseName",
    )
    exam_name: str = Field(
        default="",
        validation_alias=AliasChoices("examName", "examname", "exam_name"),
        serialization_alias="examName",
    )
    exam_date: date = Field(validation_alias=AliasChoices("examDate", "examdate", "exam_date"), serialization_alias="examDate")
    is_leap_year_date: bool = Field(
        default=False,
        validation_alias=AliasChoices("isLeapYearDate", "isleapyeardate", "is_leap_year_date"),
        serialization_alias="isLeapYearDate",
    )
    projected_date: date | None = Field(default=None, serialization_alias="projectedDate")

    @field_validator("exam_id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)

    @field_validator("exam_date", mode="before")
    @classmethod
    def strip_time_component(cls, value):
        return coerce_wire_date(value)

    @field_validator("is_leap_year_date", mode="before")
    @classmethod
    def coerce_flag(cls, value) -> bool:
        return bool(value)

    def refresh_leap_flag(self) -> None:
        # Trust the date over the service flag.
        self.is_leap_year_date = self.is_leap_year_date or is_leap_day(self.exam_date)


class YearChangeCheck(BaseModel):
    year_changed: bool = Field(alias="yearChanged")
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")
    affected_exams: list[AffectedExam] = Field(default_factory=list, alias="affectedExams")
    has_leap_year_dates: bool = Field(default=False, alias="hasLeapYearDates")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleConflict(BaseModel):
    exam_name: str = Field(
        default="",
        validation_alias=AliasChoices("examName", "examname", "exam_name"),
        serialization_alias="examName",
    )
    course_name: str = Field(
        default="",
        validation_alias=AliasChoices("courseName", "coursename", "course_name"),
        serialization_alias="courseName",
    )
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


class ScheduleEditCommit(BaseModel):
    academic_year: str = Field(alias="academicYear")
    semester: Semester
    exam_type: ExamType = Field(alias="examType")
    update_exams: bool = Field(alias="updateExams")

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ScheduleEditEvent(BaseModel):
    edit_id: str
    schedule_id: str
    status: EditEventStatus
    state: EditState
    payload: dict[str, Any] = Field(default_factory=dict)


class ConfirmEditRequest(BaseModel):
    update_exams: bool = Field(alias="updateExams")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleEditRequest(ScheduleEditProposal):
    current_academic_year: str | None = Field(default=None, alias="currentAcademicYear")


class EditStateOut(BaseModel):
    edit_id: str
    schedule_id: str
    state: EditState
    conflicts: list[dict[str, Any]] = Field(default_factory=list)
