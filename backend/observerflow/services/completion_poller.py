from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from observerflow.core.exceptions import (
    AppError,
    InvalidTransitionError,
    PollingTimeoutError,
    StrategyInvocationError,
)
from observerflow.core.security import SessionContext
from observerflow.schemas.schedule import AssignmentStatus, ScheduleAssignmentState
from observerflow.services.exam_service import ExamServiceClient

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class PollerState(str, Enum):
    idle = "Idle"
    polling = "Polling"
    resolved = "Resolved"
    timed_out = "TimedOut"
    failed = "Failed"
    stopped = "Stopped"


@dataclass(frozen=True)
class AssignmentSnapshot:
    version: int
    state: ScheduleAssignmentState
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PollResult:
    state: PollerState
    attempts: int
    snapshot: AssignmentSnapshot | None = None
    error: AppError | None = None

    @property
    def assignment_status(self) -> AssignmentStatus | None:
        if self.snapshot is None:
            return None
        return self.snapshot.state.assignment_status


class CompletionPoller:
    """Watches one schedule until an asynchronous run shows assignments.

    The exam service exposes no job identifiers, so a run counts as resolved
    once the schedule reports at least one assigned exam. Each tick records a
    numbered snapshot; the number keeps increasing across resumes.
    """

    def __init__(
        self,
        exam_service: ExamServiceClient,
        session: SessionContext,
        schedule_id: str,
        *,
        initial_delay: float = 2.0,
        interval: float = 3.0,
        max_attempts: int = 200,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._exam_service = exam_service
        self._session = session
        self.schedule_id = str(schedule_id)
        self._initial_delay = initial_delay
        self._interval = interval
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._state = PollerState.idle
        self._stop_requested = False
        self._version = 0
        self.snapshots: list[AssignmentSnapshot] = []
        self.last_result: PollResult | None = None

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def latest_snapshot(self) -> AssignmentSnapshot | None:
        return self.snapshots[-1] if self.snapshots else None

    def stop(self) -> None:
        if self._state in {PollerState.resolved, PollerState.failed, PollerState.stopped}:
            return
        self._stop_requested = True
        self._state = PollerState.stopped
        logger.debug("Poller for schedule %s stopped locally", self.schedule_id)

    async def run(self) -> PollResult:
        if self._state not in {PollerState.idle, PollerState.timed_out}:
            raise InvalidTransitionError(
                f"Poller for schedule {self.schedule_id} cannot start from {self._state.value}",
                details={"schedule_id": self.schedule_id, "state": self._state.value},
            )
        resuming = self._state is PollerState.timed_out
        self._state = PollerState.polling
        delay = self._interval if resuming else self._initial_delay

        for attempt in range(1, self._max_attempts + 1):
            await self._sleep(delay if attempt == 1 else self._interval)
            if self._stop_requested:
                return self._finish(PollerState.stopped, attempt - 1)

            try:
                current = await self._exam_service.get_schedule_assignment_state(self._session, self.schedule_id)
            except AppError as exc:
                logger.warning("Poll tick %d for schedule %s failed: %s", attempt, self.schedule_id, exc.message)
                return self._finish(PollerState.failed, attempt, error=exc)
            except ValueError as exc:
                logger.warning("Poll tick %d for schedule %s returned an unreadable state", attempt, self.schedule_id)
                error = StrategyInvocationError(
                    "Exam service returned an unreadable assignment state",
                    phase="polling",
                    details={"schedule_id": self.schedule_id, "reason": str(exc)},
                )
                return self._finish(PollerState.failed, attempt, error=error)

            if self._stop_requested:
                return self._finish(PollerState.stopped, attempt)

            self._version += 1
            snapshot = AssignmentSnapshot(version=self._version, state=current)
            self.snapshots.append(snapshot)
            logger.debug(
                "Schedule %s tick %d: %d/%d assigned",
                self.schedule_id,
                snapshot.version,
                current.assigned_exams,
                current.total_exams,
            )
            if current.assigned_exams > 0:
                return self._finish(PollerState.resolved, attempt)

        logger.info("Poll budget of %d exhausted for schedule %s", self._max_attempts, self.schedule_id)
        return self._finish(
            PollerState.timed_out,
            self._max_attempts,
            error=PollingTimeoutError(self.schedule_id, self._max_attempts),
        )

    def _finish(self, state: PollerState, attempts: int, *, error: AppError | None = None) -> PollResult:
        self._state = state
        self.last_result = PollResult(state=state, attempts=attempts, snapshot=self.latest_snapshot, error=error)
        return self.last_result
