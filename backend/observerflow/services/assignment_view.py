from __future__ import annotations

import logging
from typing import Any

from observerflow.core.exceptions import ResourceNotFoundError
from observerflow.core.security import SessionContext
from observerflow.schemas.schedule import ExamRow, Schedule, ScheduleCoverage
from observerflow.schemas.strategy import StrategyKind, StrategyRun
from observerflow.services.distribution import DistributionOrchestrator
from observerflow.services.exam_service import ExamServiceClient
from observerflow.services.schedule_revision import ScheduleEditRegistry, ScheduleRevisionCoordinator

logger = logging.getLogger(__name__)

UNASSIGNED_LABEL = "Not Assigned"


def coverage_percent(assigned: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(assigned / total * 100, 1)


class AssignmentView:
    """Presents schedules with their coverage and forwards operator actions."""

    def __init__(
        self,
        exam_service: ExamServiceClient,
        orchestrator: DistributionOrchestrator,
        edits: ScheduleEditRegistry,
    ) -> None:
        self._exam_service = exam_service
        self._orchestrator = orchestrator
        self._edits = edits

    def _coverage(self, schedule: Schedule) -> ScheduleCoverage:
        return ScheduleCoverage(
            schedule=schedule,
            assignment_status=schedule.assignment_status,
            unassigned_exams=schedule.unassigned_exams,
            coverage_percent=coverage_percent(schedule.assigned_exams, schedule.total_exams),
            active_run_id=self._orchestrator.active_run_for(schedule.schedule_id),
        )

    async def list_schedules(self, session: SessionContext) -> list[ScheduleCoverage]:
        schedules = await self._exam_service.list_schedules(session)
        return [self._coverage(schedule) for schedule in schedules]

    async def find_schedule(self, session: SessionContext, schedule_id: str) -> Schedule:
        for schedule in await self._exam_service.list_schedules(session):
            if schedule.schedule_id == str(schedule_id):
                return schedule
        raise ResourceNotFoundError("Schedule", str(schedule_id))

    async def exam_rows(self, session: SessionContext, schedule_id: str) -> list[ExamRow]:
        exams = await self._exam_service.get_schedule_exams(session, schedule_id)
        exams.sort(key=lambda exam: (exam.exam_date, exam.start_time or ""))
        return [
            ExamRow(
                exam=exam,
                is_leap_year_date=exam.is_leap_year_date,
                head_observer=exam.head_observer or UNASSIGNED_LABEL,
                secretary_observer=exam.secretary_observer or UNASSIGNED_LABEL,
            )
            for exam in exams
        ]

    async def distribute(
        self,
        session: SessionContext,
        schedule_id: str,
        strategy: StrategyKind | str,
        params: dict[str, Any] | None = None,
    ) -> StrategyRun:
        return await self._orchestrator.start_distribution(session, schedule_id, strategy, params)

    async def leave(self, run_id: str) -> StrategyRun:
        """Stop local tracking when the operator navigates away from a run."""
        return await self._orchestrator.stop(run_id)

    async def open_edit(
        self,
        session: SessionContext,
        schedule_id: str,
        *,
        current_academic_year: str | None = None,
    ) -> ScheduleRevisionCoordinator:
        if current_academic_year is None:
            schedule = await self.find_schedule(session, schedule_id)
            current_academic_year = schedule.academic_year
        logger.debug("Opening edit for schedule %s from %s", schedule_id, current_academic_year)
        return self._edits.open(session, schedule_id, current_academic_year=current_academic_year)
