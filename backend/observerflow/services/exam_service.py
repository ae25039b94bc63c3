from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from observerflow.core.config import Settings
from observerflow.core.exceptions import (
    AuthorizationError,
    Phase,
    ScheduleConflictError,
    StrategyInvocationError,
)
from observerflow.core.security import SessionContext
from observerflow.schemas.schedule import Exam, Schedule, ScheduleAssignmentState
from observerflow.schemas.schedule_edit import ScheduleConflict, ScheduleEditCommit, YearChangeCheck
from observerflow.schemas.strategy import StrategyKind

logger = logging.getLogger(__name__)

STRATEGY_PATHS = {
    StrategyKind.random: "assign-random",
    StrategyKind.genetic: "assign-genetic",
    StrategyKind.linear_programming: "assign-lp",
    StrategyKind.compare: "compare",
}


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _as_list(items: Any) -> list:
    return items if isinstance(items, list) else []


def _schedule_info(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("scheduleInfo", item)
    return item


def _unreadable(what: str, exc: ValidationError, *, phase: Phase, path: str) -> StrategyInvocationError:
    logger.warning("Exam service returned an unreadable %s for %s (%d error(s))", what, path, exc.error_count())
    errors = [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
        for error in exc.errors()
    ]
    return StrategyInvocationError(
        f"Exam service returned an unreadable {what}",
        phase=phase,
        details={"path": path, "errors": errors},
    )


def _service_message(response: httpx.Response) -> str | None:
    body = _json_or_empty(response)
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return None


class ExamServiceClient:
    """Async client for the external exam/assignment service.

    Every call takes the operator's ``SessionContext`` and forwards its bearer
    token. Service failures are translated into the application's error
    kinds, each tagged with the phase the call belongs to.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> "ExamServiceClient":
        return cls(
            settings.exam_service_url,
            timeout=settings.exam_service_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        session: SessionContext,
        *,
        phase: Phase,
        json: dict | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, headers=session.authorization_header)
        except httpx.HTTPError as exc:
            logger.warning("Exam service %s %s failed during %s: %s", method, path, phase, exc)
            raise StrategyInvocationError(phase=phase, details={"path": path}) from exc

        if response.status_code in (401, 403):
            raise AuthorizationError(_service_message(response) or "Insufficient permissions", phase=phase)
        if response.status_code == 409:
            body = _json_or_empty(response)
            raw_conflicts = body.get("conflicts", []) if isinstance(body, dict) else []
            conflicts = [
                ScheduleConflict.model_validate(item).model_dump(by_alias=True)
                for item in raw_conflicts
            ]
            raise ScheduleConflictError(
                _service_message(response) or "Schedule edit conflicts with existing exams",
                conflicts,
                phase=phase,
            )
        if response.is_error:
            message = _service_message(response)
            logger.warning(
                "Exam service %s %s returned %s during %s",
                method,
                path,
                response.status_code,
                phase,
            )
            raise StrategyInvocationError(
                message,
                phase=phase,
                details={"path": path, "status_code": response.status_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise StrategyInvocationError(
                "Exam service returned a malformed response",
                phase=phase,
                details={"path": path},
            ) from exc

    async def invoke_strategy(
        self,
        session: SessionContext,
        schedule_id: str,
        strategy: StrategyKind,
        params: dict | None = None,
    ) -> dict:
        path = f"/assignments/schedules/{schedule_id}/{STRATEGY_PATHS[strategy]}"
        return await self._request("POST", path, session, phase="submission", json=params or {})

    async def get_schedule_assignment_state(
        self,
        session: SessionContext,
        schedule_id: str,
    ) -> ScheduleAssignmentState:
        body = await self._request("GET", f"/exams/schedules/{schedule_id}/assignment-state", session, phase="polling")
        return ScheduleAssignmentState.model_validate(body)

    async def check_schedule_year_change(
        self,
        session: SessionContext,
        schedule_id: str,
        academic_year: str,
    ) -> YearChangeCheck:
        path = f"/exams/schedules/{schedule_id}/check"
        body = await self._request("POST", path, session, phase="check", json={"academicYear": academic_year})
        try:
            return YearChangeCheck.model_validate(body)
        except ValidationError as exc:
            raise _unreadable("year-change check", exc, phase="check", path=path) from exc

    async def commit_schedule_edit(
        self,
        session: SessionContext,
        schedule_id: str,
        commit: ScheduleEditCommit,
    ) -> dict:
        body = await self._request(
            "PUT",
            f"/exams/schedules/{schedule_id}",
            session,
            phase="commit",
            json=commit.to_wire(),
        )
        return body.get("schedule", body) if isinstance(body, dict) else {}

    async def list_schedules(self, session: SessionContext) -> list[Schedule]:
        path = "/exams/schedules/all"
        body = await self._request("GET", path, session, phase="view")
        items = body.get("schedules", []) if isinstance(body, dict) else body
        try:
            return [Schedule.model_validate(_schedule_info(item)) for item in _as_list(items)]
        except ValidationError as exc:
            raise _unreadable("schedule list", exc, phase="view", path=path) from exc

    async def get_schedule_exams(self, session: SessionContext, schedule_id: str) -> list[Exam]:
        path = f"/exams/schedules/{schedule_id}"
        body = await self._request("GET", path, session, phase="view")
        items = body.get("exams", []) if isinstance(body, dict) else body
        try:
            return [Exam.model_validate(item) for item in _as_list(items)]
        except ValidationError as exc:
            raise _unreadable("exam list", exc, phase="view", path=path) from exc

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError:
            logger.debug("Exam service health probe failed", exc_info=True)
            return False
        return response.is_success
