from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from jose import jwt

from observerflow.core.config import Settings, get_settings
from observerflow.core.exceptions import AuthorizationError, Phase


@dataclass(frozen=True)
class SessionContext:
    """Credentials of the operator on whose behalf a workflow runs.

    Passed explicitly into every component call; the bearer token is
    forwarded to the exam service unchanged.
    """

    token: str
    user_id: str
    role: str

    @property
    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def create_access_token(
    subject: str,
    role: str,
    *,
    settings: Settings | None = None,
    expires_minutes: int | None = None,
) -> str:
    settings = settings or get_settings()
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, *, settings: Settings | None = None) -> dict:
    settings = settings or get_settings()
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def session_from_token(token: str, *, settings: Settings | None = None) -> SessionContext:
    payload = decode_token(token, settings=settings)
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise AuthorizationError("Token is missing subject or role")
    return SessionContext(token=token, user_id=str(user_id), role=str(role))


def ensure_role(session: SessionContext, allowed_roles: Iterable[str], *, phase: Phase) -> None:
    if session.role not in set(allowed_roles):
        raise AuthorizationError(f"Role '{session.role}' may not perform this action", phase=phase)
