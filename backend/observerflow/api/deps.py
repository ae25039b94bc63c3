from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from observerflow.core.config import Settings
from observerflow.core.exceptions import AuthorizationError
from observerflow.core.security import SessionContext, session_from_token
from observerflow.services.assignment_view import AssignmentView
from observerflow.services.comparison import ComparisonStore
from observerflow.services.distribution import DistributionOrchestrator
from observerflow.services.exam_service import ExamServiceClient
from observerflow.services.schedule_revision import ScheduleEditRegistry

security = HTTPBearer()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_exam_service(request: Request) -> ExamServiceClient:
    return request.app.state.exam_service


def get_orchestrator(request: Request) -> DistributionOrchestrator:
    return request.app.state.orchestrator


def get_edit_registry(request: Request) -> ScheduleEditRegistry:
    return request.app.state.edit_registry


def get_comparison_store(request: Request) -> ComparisonStore:
    return request.app.state.comparisons


def get_assignment_view(request: Request) -> AssignmentView:
    return request.app.state.assignment_view


def get_session_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_app_settings),
) -> SessionContext:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return session_from_token(credentials.credentials, settings=settings)
    except (JWTError, AuthorizationError) as exc:
        raise credentials_exception from exc


def require_roles(roles_setting: str) -> Callable[..., SessionContext]:
    """Gate a route on the role list held in the named setting."""

    def role_checker(
        session: SessionContext = Depends(get_session_context),
        settings: Settings = Depends(get_app_settings),
    ) -> SessionContext:
        if session.role not in set(getattr(settings, roles_setting)):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return session

    return role_checker


def websocket_session(websocket: WebSocket) -> SessionContext | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("authorization")
        if not auth_header:
            return None
        scheme, _, value = auth_header.partition(" ")
        if scheme.lower() != "bearer":
            return None
        token = value.strip()
    if not token:
        return None
    try:
        return session_from_token(token, settings=websocket.app.state.settings)
    except (JWTError, AuthorizationError):
        return None
