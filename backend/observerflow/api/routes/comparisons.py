from fastapi import APIRouter, Depends, Query

from observerflow.api.deps import get_comparison_store, require_roles
from observerflow.core.exceptions import ResourceNotFoundError
from observerflow.core.security import SessionContext
from observerflow.schemas.metrics import Comparison, ComparisonRequest, ExtendedComparison
from observerflow.services.comparison import ComparisonStore, aggregate
from observerflow.services.metric_normalizer import normalize_metrics

router = APIRouter()

comparison_access = require_roles("distribution_roles")


@router.post("/comparisons", response_model=Comparison)
def compare_metrics(
    payload: ComparisonRequest,
    _: SessionContext = Depends(comparison_access),
) -> Comparison:
    return aggregate(
        normalize_metrics(payload.baseline),
        normalize_metrics(payload.challenger),
        baseline_label=payload.baseline_label,
        challenger_label=payload.challenger_label,
    )


@router.get("/schedules/{schedule_id}/comparison", response_model=Comparison | ExtendedComparison)
def latest_comparison(
    schedule_id: str,
    consume: bool = Query(default=True),
    session: SessionContext = Depends(comparison_access),
    store: ComparisonStore = Depends(get_comparison_store),
) -> Comparison | ExtendedComparison:
    if consume:
        comparison = store.take(session.user_id, schedule_id)
    else:
        comparison = store.peek(session.user_id, schedule_id)
    if comparison is None:
        raise ResourceNotFoundError("Comparison for schedule", schedule_id)
    return comparison
