from fastapi import APIRouter, Depends

from observerflow.api.deps import get_assignment_view, get_edit_registry, require_roles
from observerflow.core.security import SessionContext
from observerflow.schemas.schedule_edit import (
    ConfirmEditRequest,
    EditStateOut,
    ScheduleEditEvent,
    ScheduleEditRequest,
)
from observerflow.services.assignment_view import AssignmentView
from observerflow.services.schedule_revision import ScheduleEditRegistry, ScheduleRevisionCoordinator

router = APIRouter()

edit_access = require_roles("schedule_edit_roles")


def _state_out(coordinator: ScheduleRevisionCoordinator) -> EditStateOut:
    return EditStateOut(
        edit_id=coordinator.edit_id,
        schedule_id=coordinator.schedule_id,
        state=coordinator.state,
        conflicts=coordinator.conflicts,
    )


@router.post("/schedules/{schedule_id}/edits", response_model=ScheduleEditEvent)
async def start_schedule_edit(
    schedule_id: str,
    payload: ScheduleEditRequest,
    session: SessionContext = Depends(edit_access),
    view: AssignmentView = Depends(get_assignment_view),
) -> ScheduleEditEvent:
    coordinator = await view.open_edit(
        session,
        schedule_id,
        current_academic_year=payload.current_academic_year,
    )
    return await coordinator.check(payload)


@router.get("/schedule-edits/{edit_id}", response_model=EditStateOut)
def get_schedule_edit(
    edit_id: str,
    session: SessionContext = Depends(edit_access),
    registry: ScheduleEditRegistry = Depends(get_edit_registry),
) -> EditStateOut:
    return _state_out(registry.get(edit_id, session))


@router.post("/schedule-edits/{edit_id}/confirm", response_model=ScheduleEditEvent)
async def confirm_schedule_edit(
    edit_id: str,
    payload: ConfirmEditRequest,
    session: SessionContext = Depends(edit_access),
    registry: ScheduleEditRegistry = Depends(get_edit_registry),
) -> ScheduleEditEvent:
    coordinator = registry.get(edit_id, session)
    return await coordinator.confirm(payload.update_exams)


@router.post("/schedule-edits/{edit_id}/back", response_model=EditStateOut)
def back_to_editing(
    edit_id: str,
    session: SessionContext = Depends(edit_access),
    registry: ScheduleEditRegistry = Depends(get_edit_registry),
) -> EditStateOut:
    coordinator = registry.get(edit_id, session)
    coordinator.back()
    return _state_out(coordinator)


@router.post("/schedule-edits/{edit_id}/abort", response_model=EditStateOut)
def abort_schedule_edit(
    edit_id: str,
    session: SessionContext = Depends(edit_access),
    registry: ScheduleEditRegistry = Depends(get_edit_registry),
) -> EditStateOut:
    coordinator = registry.get(edit_id, session)
    coordinator.abort()
    return _state_out(coordinator)
