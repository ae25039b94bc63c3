from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from observerflow.core.config import Settings
from observerflow.core.exceptions import (
    AppError,
    DistributionInProgressError,
    InvalidTransitionError,
    ResourceNotFoundError,
    StrategyInvocationError,
)
from observerflow.core.security import SessionContext, ensure_role
from observerflow.schemas.schedule import derive_assignment_status
from observerflow.schemas.strategy import (
    DistributionEvent,
    DistributionStatus,
    RunStatus,
    StrategyKind,
    StrategyOutcome,
    StrategyRun,
)
from observerflow.services.comparison import ComparisonStore, comparison_from_service
from observerflow.services.completion_poller import CompletionPoller, PollerState, PollResult, SleepFn
from observerflow.services.event_channel import EventChannel
from observerflow.services.exam_service import ExamServiceClient
from observerflow.services.metric_normalizer import normalize_metrics
from observerflow.services.strategy_invoker import StrategyInvoker

logger = logging.getLogger(__name__)


@dataclass
class _RunRecord:
    run: StrategyRun
    session: SessionContext
    status: DistributionStatus = DistributionStatus.submitted
    poller: CompletionPoller | None = None
    task: asyncio.Task | None = None
    sequence: int = 0
    phase: str | None = None


def _assignment_summary(total: int | None, assigned: int | None) -> dict[str, Any]:
    summary: dict[str, Any] = {"totalExams": total, "assignedExams": assigned, "assignmentStatus": None}
    if total is None or assigned is None:
        return summary
    try:
        summary["assignmentStatus"] = derive_assignment_status(assigned, total).value
    except ValueError as exc:
        raise StrategyInvocationError(
            "Exam service reported inconsistent assignment counts",
            phase="submission",
            details={"totalExams": total, "assignedExams": assigned, "reason": str(exc)},
        ) from exc
    return summary


class DistributionOrchestrator:
    """Drives distribution runs and publishes their state transitions.

    Only one run may hold a schedule at a time. The holder releases it when
    the run completes, fails, is stopped or is abandoned; a timed-out run
    keeps it until resumed or abandoned.
    """

    def __init__(
        self,
        exam_service: ExamServiceClient,
        *,
        settings: Settings,
        comparisons: ComparisonStore | None = None,
        channel: EventChannel | None = None,
        sleep: SleepFn = asyncio.sleep,
        allowed_roles: Iterable[str] | None = None,
    ) -> None:
        self._exam_service = exam_service
        self._settings = settings
        self._allowed_roles = tuple(allowed_roles or settings.distribution_roles)
        self._invoker = StrategyInvoker(exam_service, self._allowed_roles)
        self.comparisons = comparisons or ComparisonStore()
        self.channel = channel or EventChannel()
        self._sleep = sleep
        self._runs: dict[str, _RunRecord] = {}
        self._schedule_holders: dict[str, str] = {}

    # Queries

    def get_run(self, run_id: str) -> StrategyRun:
        return self._record(run_id).run

    def distribution_status(self, run_id: str) -> DistributionStatus:
        return self._record(run_id).status

    def describe(self, run_id: str) -> dict[str, Any]:
        record = self._record(run_id)
        view = record.run.model_dump(mode="json")
        view["distribution_status"] = record.status.value
        view["phase"] = record.phase
        return view

    def events(self, run_id: str) -> list[dict]:
        self._record(run_id)
        return self.channel.history(run_id)

    def active_run_for(self, schedule_id: str) -> str | None:
        return self._schedule_holders.get(str(schedule_id))

    def _record(self, run_id: str) -> _RunRecord:
        record = self._runs.get(run_id)
        if record is None:
            raise ResourceNotFoundError("Distribution run", run_id)
        return record

    # Lifecycle

    async def start_distribution(
        self,
        session: SessionContext,
        schedule_id: str,
        strategy: StrategyKind | str,
        params: dict[str, Any] | None = None,
    ) -> StrategyRun:
        schedule_id = str(schedule_id)
        ensure_role(session, self._allowed_roles, phase="submission")
        holder = self._schedule_holders.get(schedule_id)
        if holder is not None:
            raise DistributionInProgressError(schedule_id, holder)

        kind, wire_params = self._invoker.prepare(strategy, params)
        run = StrategyRun(schedule_id=schedule_id, strategy=kind, parameters=wire_params or {})
        record = _RunRecord(run=run, session=session)
        self._runs[run.run_id] = record
        self._schedule_holders[schedule_id] = run.run_id

        try:
            outcome = await self._invoker.invoke(session, schedule_id, kind, params)
        except AppError as exc:
            exc.details.setdefault("run_id", run.run_id)
            if not run.status.is_terminal:
                await self._fail(record, exc.message, phase=getattr(exc, "phase", "submission"))
            raise

        if run.status.is_terminal:
            logger.info("Run %s was stopped before schedule %s answered", run.run_id, schedule_id)
            return run

        await self._emit(record, DistributionStatus.submitted, result={"message": outcome.message})
        if kind is StrategyKind.genetic:
            await self._begin_polling(record)
            return run

        try:
            result = self._synchronous_result(record, outcome)
        except AppError as exc:
            await self._fail(record, exc.message, phase=getattr(exc, "phase", "submission"))
            raise
        run.advance(RunStatus.running)
        await self._emit(record, DistributionStatus.running)
        await self._complete(record, result)
        return run

    def _synchronous_result(self, record: _RunRecord, outcome: StrategyOutcome) -> dict[str, Any]:
        result: dict[str, Any] = {
            "strategy": outcome.strategy.value,
            "message": outcome.message,
            "assignments": [pair.model_dump(by_alias=True) for pair in outcome.assignments],
        }
        result.update(_assignment_summary(outcome.total_exams, outcome.assigned_exams))

        if outcome.quality_metrics is not None:
            metrics = normalize_metrics(outcome.quality_metrics, total_exams=outcome.total_exams)
            result["qualityMetrics"] = metrics.model_dump(mode="json")

        if outcome.strategy is StrategyKind.compare:
            comparison = comparison_from_service(outcome.comparison, applied_algorithm=outcome.applied_algorithm)
            self.comparisons.put(record.session.user_id, record.run.schedule_id, comparison)
            result["comparison"] = comparison.model_dump(mode="json")
            result["appliedAlgorithm"] = outcome.applied_algorithm
        return result

    async def _begin_polling(self, record: _RunRecord) -> None:
        record.poller = CompletionPoller(
            self._exam_service,
            record.session,
            record.run.schedule_id,
            initial_delay=self._settings.poll_initial_delay_seconds,
            interval=self._settings.poll_interval_seconds,
            max_attempts=self._settings.poll_max_attempts,
            sleep=self._sleep,
        )
        record.run.advance(RunStatus.running)
        await self._emit(record, DistributionStatus.running)
        record.task = asyncio.create_task(self._watch(record))

    async def _watch(self, record: _RunRecord) -> None:
        try:
            result = await record.poller.run()
        except asyncio.CancelledError:
            logger.debug("Watcher for run %s cancelled", record.run.run_id)
            raise
        except Exception:
            logger.exception("Watcher for run %s crashed", record.run.run_id)
            await self._fail(record, "Completion polling stopped unexpectedly", phase="polling")
            return
        await self._settle(record, result)

    async def _settle(self, record: _RunRecord, result: PollResult) -> None:
        if result.state is PollerState.resolved:
            snapshot = result.snapshot
            await self._complete(
                record,
                {
                    "strategy": record.run.strategy.value,
                    "totalExams": snapshot.state.total_exams,
                    "assignedExams": snapshot.state.assigned_exams,
                    "assignmentStatus": result.assignment_status.value,
                    "snapshotVersion": snapshot.version,
                    "attempts": result.attempts,
                },
            )
        elif result.state is PollerState.failed:
            await self._fail(record, result.error.message if result.error else "Polling failed", phase="polling")
        elif result.state is PollerState.timed_out:
            logger.info("Run %s timed out after %d poll(s)", record.run.run_id, result.attempts)
            await self._emit(
                record,
                DistributionStatus.timed_out,
                error=result.error.message if result.error else None,
                phase="polling",
                result={"attempts": result.attempts},
            )

    async def stop(self, run_id: str) -> StrategyRun:
        """Tear down local tracking of a run. No cancel is sent to the service."""
        record = self._record(run_id)
        if record.run.status.is_terminal:
            return record.run
        await self._teardown(record, reason="stopped")
        return record.run

    async def resume(self, session: SessionContext, run_id: str) -> StrategyRun:
        ensure_role(session, self._allowed_roles, phase="polling")
        record = self._record(run_id)
        if record.status is not DistributionStatus.timed_out or record.poller is None:
            raise InvalidTransitionError(
                f"Run {run_id} can only be resumed after timing out",
                details={"run_id": run_id, "status": record.status.value},
            )
        record.session = session
        await self._emit(record, DistributionStatus.running, result={"resumed": True})
        record.task = asyncio.create_task(self._watch(record))
        return record.run

    async def abandon(self, session: SessionContext, run_id: str) -> StrategyRun:
        ensure_role(session, self._allowed_roles, phase="polling")
        record = self._record(run_id)
        if record.status is not DistributionStatus.timed_out:
            raise InvalidTransitionError(
                f"Run {run_id} can only be abandoned after timing out",
                details={"run_id": run_id, "status": record.status.value},
            )
        await self._teardown(record, reason="abandoned")
        return record.run

    async def wait(self, run_id: str) -> StrategyRun:
        record = self._record(run_id)
        if record.task is not None and not record.task.done():
            await asyncio.shield(record.task)
        return record.run

    async def shutdown(self) -> None:
        for record in list(self._runs.values()):
            if not record.run.status.is_terminal:
                await self._teardown(record, reason="stopped")

    async def _teardown(self, record: _RunRecord, *, reason: str) -> None:
        if record.poller is not None:
            record.poller.stop()
        task = record.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        phase = "polling" if record.poller is not None else "submission"
        await self._fail(record, f"Run {reason} before completion", phase=phase, reason=reason)

    # Transitions

    async def _complete(self, record: _RunRecord, result: dict[str, Any]) -> None:
        record.run.advance(RunStatus.completed)
        record.run.result = result
        logger.info("Run %s for schedule %s completed", record.run.run_id, record.run.schedule_id)
        await self._emit(record, DistributionStatus.completed, result=result)
        await self._release(record)

    async def _fail(self, record: _RunRecord, message: str, *, phase: str, reason: str | None = None) -> None:
        record.run.advance(RunStatus.failed)
        record.run.error = message
        record.phase = phase
        logger.warning("Run %s for schedule %s failed during %s: %s", record.run.run_id, record.run.schedule_id, phase, message)
        await self._emit(
            record,
            DistributionStatus.failed,
            error=message,
            phase=phase,
            result={"reason": reason} if reason else None,
        )
        await self._release(record)

    async def _release(self, record: _RunRecord) -> None:
        schedule_id = record.run.schedule_id
        if self._schedule_holders.get(schedule_id) == record.run.run_id:
            self._schedule_holders.pop(schedule_id, None)
        await self.channel.close(record.run.run_id)
        await self._prune_finished()

    async def _prune_finished(self) -> None:
        finished = [run_id for run_id, record in self._runs.items() if record.run.status.is_terminal]
        excess = len(finished) - self._settings.finished_run_retention
        for run_id in finished[:max(excess, 0)]:
            self._runs.pop(run_id, None)
            await self.channel.discard(run_id)
        if excess > 0:
            logger.debug("Pruned %d finished run(s)", excess)

    async def _emit(
        self,
        record: _RunRecord,
        status: DistributionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        phase: str | None = None,
    ) -> None:
        record.sequence += 1
        record.status = status
        event = DistributionEvent(
            sequence=record.sequence,
            run_id=record.run.run_id,
            schedule_id=record.run.schedule_id,
            strategy=record.run.strategy,
            status=status,
            result=result,
            error=error,
            phase=phase,
        )
        await self.channel.publish(record.run.run_id, event.model_dump(mode="json"))
