from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from observerflow.core.exceptions import InputValidationError, StrategyInvocationError
from observerflow.core.security import SessionContext, ensure_role
from observerflow.schemas.strategy import (
    AssignmentPair,
    GeneticParameters,
    RunStatus,
    StrategyKind,
    StrategyOutcome,
)
from observerflow.services.exam_service import ExamServiceClient

logger = logging.getLogger(__name__)


def validate_genetic_parameters(params: dict[str, Any] | None) -> GeneticParameters:
    if not params:
        raise InputValidationError(
            "Genetic algorithm parameters are required",
            details={"errors": [{"loc": ["params"], "msg": "Field required"}]},
        )
    try:
        return GeneticParameters.model_validate(params)
    except ValidationError as exc:
        errors = [
            {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
            for error in exc.errors()
        ]
        raise InputValidationError("Invalid genetic algorithm parameters", details={"errors": errors}) from exc


def _wire_parameters(strategy: StrategyKind, params: dict[str, Any] | None) -> dict[str, Any] | None:
    if strategy is StrategyKind.genetic:
        return validate_genetic_parameters(params).model_dump(by_alias=True)
    if strategy is StrategyKind.compare and params:
        return validate_genetic_parameters(params).model_dump(by_alias=True)
    if params:
        logger.debug("Ignoring parameters supplied for %s strategy", strategy.value)
    return None


def _read_count(body: dict, *keys: str) -> int | None:
    for key in keys:
        value = body.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _parse_outcome(strategy: StrategyKind, body: dict) -> StrategyOutcome:
    if strategy.is_asynchronous:
        return StrategyOutcome(strategy=strategy, status=RunStatus.submitted, message=body.get("message"))

    assignments = [AssignmentPair.model_validate(item) for item in body.get("assignments") or []]
    total = _read_count(body, "totalExams", "total_exams")
    assigned = _read_count(body, "assignedExams", "assigned_exams")
    if assigned is None and assignments:
        assigned = sum(1 for pair in assignments if pair.is_complete)
    if total is None and assignments:
        total = len(assignments)

    quality = body.get("qualityMetrics") or body.get("metrics")
    return StrategyOutcome(
        strategy=strategy,
        status=RunStatus.completed,
        message=body.get("message"),
        assignments=assignments,
        total_exams=total,
        assigned_exams=assigned,
        quality_metrics=quality if isinstance(quality, dict) else None,
        comparison=body.get("comparison") if isinstance(body.get("comparison"), dict) else None,
        applied_algorithm=body.get("appliedAlgorithm"),
    )


class StrategyInvoker:
    """Runs one named assignment strategy against a schedule."""

    def __init__(self, exam_service: ExamServiceClient, allowed_roles: Iterable[str] = ("admin",)) -> None:
        self._exam_service = exam_service
        self._allowed_roles = tuple(allowed_roles)

    def prepare(
        self,
        strategy: StrategyKind | str,
        params: dict[str, Any] | None = None,
    ) -> tuple[StrategyKind, dict[str, Any] | None]:
        """Validate a request locally and return the strategy with its wire parameters."""
        try:
            kind = StrategyKind(strategy)
        except ValueError as exc:
            raise InputValidationError(
                f"Unknown strategy '{strategy}'",
                details={"allowed": [item.value for item in StrategyKind]},
            ) from exc
        return kind, _wire_parameters(kind, params)

    async def invoke(
        self,
        session: SessionContext,
        schedule_id: str,
        strategy: StrategyKind | str,
        params: dict[str, Any] | None = None,
    ) -> StrategyOutcome:
        strategy, wire_params = self.prepare(strategy, params)
        ensure_role(session, self._allowed_roles, phase="submission")

        logger.info("Invoking %s strategy for schedule %s", strategy.value, schedule_id)
        body = await self._exam_service.invoke_strategy(session, schedule_id, strategy, wire_params)
        try:
            outcome = _parse_outcome(strategy, body if isinstance(body, dict) else {})
        except ValidationError as exc:
            raise StrategyInvocationError(
                "Exam service returned malformed assignments",
                details={"schedule_id": str(schedule_id), "strategy": strategy.value},
            ) from exc
        logger.debug(
            "Strategy %s for schedule %s returned %s",
            strategy.value,
            schedule_id,
            outcome.status.value,
        )
        return outcome
