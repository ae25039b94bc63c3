import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from observerflow.api.deps import (
    get_assignment_view,
    get_orchestrator,
    require_roles,
    websocket_session,
)
from observerflow.core.exceptions import ResourceNotFoundError
from observerflow.core.security import SessionContext
from observerflow.schemas.strategy import DistributionEvent, DistributionRequest, DistributionRunOut
from observerflow.services.assignment_view import AssignmentView
from observerflow.services.distribution import DistributionOrchestrator

router = APIRouter()

logger = logging.getLogger(__name__)

distribution_access = require_roles("distribution_roles")


@router.post(
    "/schedules/{schedule_id}/distributions",
    response_model=DistributionRunOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_distribution(
    schedule_id: str,
    payload: DistributionRequest,
    session: SessionContext = Depends(distribution_access),
    view: AssignmentView = Depends(get_assignment_view),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> DistributionRunOut:
    run = await view.distribute(session, schedule_id, payload.strategy, payload.parameters)
    return orchestrator.describe(run.run_id)


@router.get("/distributions/{run_id}", response_model=DistributionRunOut)
def get_distribution(
    run_id: str,
    _: SessionContext = Depends(distribution_access),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> DistributionRunOut:
    return orchestrator.describe(run_id)


@router.get("/distributions/{run_id}/events", response_model=list[DistributionEvent])
def list_distribution_events(
    run_id: str,
    _: SessionContext = Depends(distribution_access),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> list[DistributionEvent]:
    return orchestrator.events(run_id)


@router.post("/distributions/{run_id}/stop", response_model=DistributionRunOut)
async def stop_distribution(
    run_id: str,
    _: SessionContext = Depends(distribution_access),
    view: AssignmentView = Depends(get_assignment_view),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> DistributionRunOut:
    await view.leave(run_id)
    return orchestrator.describe(run_id)


@router.post("/distributions/{run_id}/resume", response_model=DistributionRunOut)
async def resume_distribution(
    run_id: str,
    session: SessionContext = Depends(distribution_access),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> DistributionRunOut:
    await orchestrator.resume(session, run_id)
    return orchestrator.describe(run_id)


@router.post("/distributions/{run_id}/abandon", response_model=DistributionRunOut)
async def abandon_distribution(
    run_id: str,
    session: SessionContext = Depends(distribution_access),
    orchestrator: DistributionOrchestrator = Depends(get_orchestrator),
) -> DistributionRunOut:
    await orchestrator.abandon(session, run_id)
    return orchestrator.describe(run_id)


@router.websocket("/distributions/{run_id}/ws")
async def distribution_websocket(websocket: WebSocket, run_id: str) -> None:
    session = websocket_session(websocket)
    if session is None or session.role not in websocket.app.state.settings.distribution_roles:
        await websocket.close(code=1008)
        return

    orchestrator: DistributionOrchestrator = websocket.app.state.orchestrator
    try:
        orchestrator.get_run(run_id)
    except ResourceNotFoundError:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    try:
        async for event in orchestrator.channel.stream(run_id):
            await websocket.send_json(event)
    except WebSocketDisconnect:
        logger.debug("Subscriber for run %s disconnected", run_id)
        return
    await websocket.close()
