from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from observerflow.api.deps import get_app_settings, get_exam_service
from observerflow.core.config import Settings
from observerflow.services.exam_service import ExamServiceClient

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/live")
def health_live() -> dict:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/health/ready")
async def health_ready(
    settings: Settings = Depends(get_app_settings),
    exam_service: ExamServiceClient = Depends(get_exam_service),
) -> JSONResponse:
    exam_service_ok = await exam_service.ping()
    payload = {
        "status": "ok" if exam_service_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "exam_service": {
            "ok": exam_service_ok,
            "url": settings.exam_service_url,
        },
        "polling": {
            "initial_delay_seconds": settings.poll_initial_delay_seconds,
            "interval_seconds": settings.poll_interval_seconds,
            "max_attempts": settings.poll_max_attempts,
        },
    }
    return JSONResponse(status_code=200 if exam_service_ok else 503, content=payload)
