from functools import lru_cache
import json
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    # Resolve to backend/.env so the app can be served from any cwd.
    model_config = SettingsConfigDict(env_file=str(BACKEND_ENV_FILE), env_file_encoding="utf-8")

    project_name: str = "ObserverFlow API"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    exam_service_url: str = "http://localhost:3000/api"
    exam_service_timeout_seconds: float = 60.0

    poll_initial_delay_seconds: float = 2.0
    poll_interval_seconds: float = 3.0
    poll_max_attempts: int = 200
    finished_run_retention: int = 50

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    distribution_roles: list[str] = ["admin"]
    schedule_edit_roles: list[str] = ["admin"]

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3001",
    ]

    @field_validator("cors_origins", "distribution_roles", "schedule_edit_roles", mode="before")
    @classmethod
    def split_list_values(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("poll_max_attempts")
    @classmethod
    def validate_poll_budget(cls, value: int) -> int:
        if value < 1:
            raise ValueError("poll_max_attempts must be at least 1")
        return value

    @field_validator("finished_run_retention")
    @classmethod
    def validate_run_retention(cls, value: int) -> int:
        if value < 1:
            raise ValueError("finished_run_retention must be at least 1")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
