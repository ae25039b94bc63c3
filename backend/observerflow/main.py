import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from observerflow.api.routes import comparisons, distribution, health, schedule_edits, schedules
from observerflow.core.config import Settings, get_settings
from observerflow.core.exceptions import AppError
from observerflow.services.assignment_view import AssignmentView
from observerflow.services.comparison import ComparisonStore
from observerflow.services.distribution import DistributionOrchestrator
from observerflow.services.exam_service import ExamServiceClient
from observerflow.services.schedule_revision import ScheduleEditRegistry

logger = logging.getLogger(__name__)


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )


def create_app(settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("observerflow").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        exam_service = ExamServiceClient.from_settings(settings, transport=transport)
        comparison_store = ComparisonStore()
        orchestrator = DistributionOrchestrator(exam_service, settings=settings, comparisons=comparison_store)
        edit_registry = ScheduleEditRegistry(exam_service, settings.schedule_edit_roles)

        app.state.exam_service = exam_service
        app.state.comparisons = comparison_store
        app.state.orchestrator = orchestrator
        app.state.edit_registry = edit_registry
        app.state.assignment_view = AssignmentView(exam_service, orchestrator, edit_registry)
        logger.info("Forwarding assignment work to %s", settings.exam_service_url)
        try:
            yield
        finally:
            await orchestrator.shutdown()
            await exam_service.aclose()

    app = FastAPI(title=settings.project_name, lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(AppError, app_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
    app.include_router(schedules.router, prefix=settings.api_prefix, tags=["schedules"])
    app.include_router(distribution.router, prefix=settings.api_prefix, tags=["distributions"])
    app.include_router(schedule_edits.router, prefix=settings.api_prefix, tags=["schedule-edits"])
    app.include_router(comparisons.router, prefix=settings.api_prefix, tags=["comparisons"])
    return app


app = create_app()
