from fastapi import APIRouter, Depends

from observerflow.api.deps import get_assignment_view, get_session_context
from observerflow.core.security import SessionContext
from observerflow.schemas.schedule import ExamRow, ScheduleCoverage
from observerflow.services.assignment_view import AssignmentView

router = APIRouter()


@router.get("/schedules", response_model=list[ScheduleCoverage])
async def list_schedules(
    session: SessionContext = Depends(get_session_context),
    view: AssignmentView = Depends(get_assignment_view),
) -> list[ScheduleCoverage]:
    return await view.list_schedules(session)


@router.get("/schedules/{schedule_id}/exams", response_model=list[ExamRow])
async def list_schedule_exams(
    schedule_id: str,
    session: SessionContext = Depends(get_session_context),
    view: AssignmentView = Depends(get_assignment_view),
) -> list[ExamRow]:
    return await view.exam_rows(session, schedule_id)
