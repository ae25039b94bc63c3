from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date
from typing import Any, Iterable

from observerflow.core.exceptions import (
    AppError,
    InputValidationError,
    InvalidTransitionError,
    ResourceNotFoundError,
    ScheduleConflictError,
)
from observerflow.core.security import SessionContext, ensure_role
from observerflow.schemas.schedule import is_leap_day, parse_academic_year
from observerflow.schemas.schedule_edit import (
    EditEventStatus,
    EditState,
    ScheduleEditCommit,
    ScheduleEditEvent,
    ScheduleEditProposal,
    YearChangeCheck,
)
from observerflow.services.exam_service import ExamServiceClient

logger = logging.getLogger(__name__)


def validate_academic_year(value: str) -> tuple[int, int]:
    try:
        return parse_academic_year(value)
    except ValueError as exc:
        raise InputValidationError(str(exc), phase="check", details={"academicYear": value}) from exc


def shift_exam_date(exam_date: date, current_year: str, new_year: str) -> date:
    """Move an exam date into another academic year.

    The calendar year moves by the same offset as the academic year. A
    February 29 that lands in a non-leap year becomes February 28.
    """
    current_first, _ = validate_academic_year(current_year)
    new_first, _ = validate_academic_year(new_year)
    target_year = exam_date.year + (new_first - current_first)
    if is_leap_day(exam_date) and not calendar.isleap(target_year):
        return date(target_year, 2, 28)
    return exam_date.replace(year=target_year)


class ScheduleRevisionCoordinator:
    """Two-phase edit of a schedule's academic year, semester and exam type.

    ``check`` always runs before any commit. When the academic year really
    changes, the affected exams are returned for review and nothing is
    committed until ``confirm`` is called.
    """

    def __init__(
        self,
        exam_service: ExamServiceClient,
        session: SessionContext,
        schedule_id: str,
        *,
        current_academic_year: str | None = None,
        allowed_roles: Iterable[str] = ("admin",),
    ) -> None:
        if current_academic_year:
            validate_academic_year(current_academic_year)
        self.edit_id = str(uuid.uuid4())
        self.schedule_id = str(schedule_id)
        self.owner_id = session.user_id
        self.current_academic_year = current_academic_year
        self._exam_service = exam_service
        self._session = session
        self._allowed_roles = tuple(allowed_roles)
        self.state = EditState.editing
        self.proposal: ScheduleEditProposal | None = None
        self.year_check: YearChangeCheck | None = None
        self.conflicts: list[dict] = []

    @property
    def is_finished(self) -> bool:
        return self.state in {EditState.closed, EditState.aborted}

    def _event(self, status: EditEventStatus, payload: dict[str, Any] | None = None) -> ScheduleEditEvent:
        return ScheduleEditEvent(
            edit_id=self.edit_id,
            schedule_id=self.schedule_id,
            status=status,
            state=self.state,
            payload=payload or {},
        )

    def _require(self, allowed: set[EditState], action: str) -> None:
        if self.state not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} schedule edit while {self.state.value}",
                details={"edit_id": self.edit_id, "state": self.state.value},
            )

    async def check(self, proposal: ScheduleEditProposal | dict) -> ScheduleEditEvent:
        self._require({EditState.editing}, "check")
        ensure_role(self._session, self._allowed_roles, phase="check")
        if isinstance(proposal, dict):
            proposal = ScheduleEditProposal.model_validate(proposal)

        try:
            validate_academic_year(proposal.academic_year)
        except InputValidationError as exc:
            logger.debug("Rejected academic year %r for schedule %s", proposal.academic_year, self.schedule_id)
            return self._event(EditEventStatus.validation_error, {"message": exc.message, "details": exc.details})

        self.proposal = proposal
        self.state = EditState.checking
        try:
            result = await self._exam_service.check_schedule_year_change(
                self._session,
                self.schedule_id,
                proposal.academic_year,
            )
        except AppError:
            self.state = EditState.editing
            raise
        self.year_check = result

        if not result.year_changed:
            self.state = EditState.direct_apply
            return await self._commit(update_exams=False)

        for exam in result.affected_exams:
            exam.refresh_leap_flag()
            if self.current_academic_year:
                exam.projected_date = shift_exam_date(exam.exam_date, self.current_academic_year, proposal.academic_year)
        result.has_leap_year_dates = result.has_leap_year_dates or any(
            exam.is_leap_year_date for exam in result.affected_exams
        )
        self.state = EditState.needs_confirmation
        logger.info(
            "Schedule %s year change to %s affects %d exam(s)",
            self.schedule_id,
            proposal.academic_year,
            len(result.affected_exams),
        )
        return self._event(
            EditEventStatus.needs_confirmation,
            {
                "academicYear": proposal.academic_year,
                "currentAcademicYear": self.current_academic_year,
                "requiresConfirmation": result.requires_confirmation,
                "hasLeapYearDates": result.has_leap_year_dates,
                "affectedExams": [exam.model_dump(mode="json", by_alias=True) for exam in result.affected_exams],
            },
        )

    async def confirm(self, update_exams: bool) -> ScheduleEditEvent:
        self._require({EditState.needs_confirmation, EditState.conflict}, "confirm")
        if self.year_check is None or not self.year_check.year_changed:
            raise InvalidTransitionError(
                "Nothing to confirm for this schedule edit",
                details={"edit_id": self.edit_id, "state": self.state.value},
            )
        ensure_role(self._session, self._allowed_roles, phase="commit")
        self.state = EditState.confirmed
        return await self._commit(update_exams=update_exams)

    async def _commit(self, *, update_exams: bool) -> ScheduleEditEvent:
        previous = EditState.needs_confirmation if self.state is EditState.confirmed else EditState.editing
        commit = ScheduleEditCommit(
            academic_year=self.proposal.academic_year,
            semester=self.proposal.semester,
            exam_type=self.proposal.exam_type,
            update_exams=update_exams,
        )
        try:
            schedule = await self._exam_service.commit_schedule_edit(self._session, self.schedule_id, commit)
        except ScheduleConflictError as exc:
            self.conflicts = exc.conflicts
            self.state = EditState.conflict
            logger.info("Schedule %s edit hit %d conflict(s)", self.schedule_id, len(exc.conflicts))
            return self._event(EditEventStatus.conflict, {"message": exc.message, "conflicts": exc.conflicts})
        except AppError:
            self.state = previous
            raise

        self.state = EditState.closed
        self.conflicts = []
        self.current_academic_year = commit.academic_year
        logger.info("Schedule %s edit applied (updateExams=%s)", self.schedule_id, update_exams)
        return self._event(EditEventStatus.applied, {"schedule": schedule, "updateExams": update_exams})

    def back(self) -> EditState:
        self._require({EditState.needs_confirmation, EditState.conflict}, "go back from")
        self.state = EditState.editing
        self.year_check = None
        self.conflicts = []
        return self.state

    def abort(self) -> EditState:
        if self.is_finished:
            raise InvalidTransitionError(
                "Schedule edit is already finished",
                details={"edit_id": self.edit_id, "state": self.state.value},
            )
        self.state = EditState.aborted
        logger.debug("Schedule %s edit %s aborted", self.schedule_id, self.edit_id)
        return self.state


class ScheduleEditRegistry:
    """Open edit coordinators, keyed by edit id, for the lifetime of the app."""

    def __init__(self, exam_service: ExamServiceClient, allowed_roles: Iterable[str] = ("admin",)) -> None:
        self._exam_service = exam_service
        self._allowed_roles = tuple(allowed_roles)
        self._edits: dict[str, ScheduleRevisionCoordinator] = {}

    def open(
        self,
        session: SessionContext,
        schedule_id: str,
        *,
        current_academic_year: str | None = None,
    ) -> ScheduleRevisionCoordinator:
        self.discard_finished()
        coordinator = ScheduleRevisionCoordinator(
            self._exam_service,
            session,
            schedule_id,
            current_academic_year=current_academic_year,
            allowed_roles=self._allowed_roles,
        )
        self._edits[coordinator.edit_id] = coordinator
        return coordinator

    def get(self, edit_id: str, session: SessionContext) -> ScheduleRevisionCoordinator:
        coordinator = self._edits.get(edit_id)
        if coordinator is None or coordinator.owner_id != session.user_id:
            raise ResourceNotFoundError("Schedule edit", edit_id)
        return coordinator

    def discard_finished(self) -> int:
        finished = [edit_id for edit_id, coordinator in self._edits.items() if coordinator.is_finished]
        for edit_id in finished:
            self._edits.pop(edit_id, None)
        return len(finished)
