from __future__ import annotations

import logging
import math
from typing import Any

from observerflow.core.exceptions import InputValidationError
from observerflow.schemas.metrics import OVERALL_SCORE_WEIGHTS, QUALITY_METRICS, QualityMetrics, ScoreTier

logger = logging.getLogger(__name__)

# Wire key first, then the snake_case spelling.
_METRIC_KEYS = {
    "coverage": ("coverage",),
    "workload_balance": ("workloadBalance", "workload_balance"),
    "fairness": ("fairness",),
    "efficiency": ("efficiency",),
    "overall_score": ("overallScore", "overall_score"),
}

_TIER_THRESHOLDS = (
    (90.0, ScoreTier.excellent),
    (80.0, ScoreTier.good),
    (70.0, ScoreTier.fair),
    (60.0, ScoreTier.poor),
)


def score_tier(score: float) -> ScoreTier:
    for threshold, tier in _TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return ScoreTier.critical


def exams_per_second(total_exams: float, total_time_ms: float) -> float:
    if total_exams < 0 or total_time_ms < 0:
        raise InputValidationError(
            "Exam count and elapsed time must be non-negative",
            phase="comparison",
            details={"total_exams": total_exams, "total_time_ms": total_time_ms},
        )
    if total_time_ms == 0:
        return 0.0
    return total_exams / (total_time_ms / 1000)


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip().rstrip("%").strip()
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def coerce_percentage(value: Any) -> float | None:
    """Reduce one reported metric to a 0-100 number, or None if unusable.

    The strategy services report metrics as bare numbers, ``"85.3%"`` strings,
    ``{"percentage": p}`` objects, or ``{"score": s}`` objects where ``s`` is
    a 0-1 fraction.
    """
    if isinstance(value, dict):
        if "percentage" in value:
            return _to_float(value["percentage"])
        if "score" in value:
            score = _to_float(value["score"])
            return None if score is None else score * 100
        return None
    return _to_float(value)


def _clamp(metric: str, value: float) -> float:
    clamped = min(100.0, max(0.0, value))
    if clamped != value:
        logger.warning("Clamped %s from %s into the 0-100 range", metric, value)
    return clamped


def _first_present(raw: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _read_timing(raw: dict) -> float:
    timing = raw.get("performance") if isinstance(raw.get("performance"), dict) else raw
    value = _to_float(_first_present(timing, ("totalTimeMs", "total_time_ms", "executionTime", "execution_time")))
    if value is None or value < 0:
        return 0.0
    return value


def _read_throughput(raw: dict) -> float | None:
    timing = raw.get("performance") if isinstance(raw.get("performance"), dict) else raw
    value = _to_float(_first_present(timing, ("examsPerSecond", "exams_per_second")))
    if value is None or value <= 0:
        return None
    return value


def _read_total_exams(raw: dict, fallback: int | None) -> int:
    value = _to_float(_first_present(raw, ("totalExams", "total_exams")))
    if value is None or value < 0:
        return max(fallback or 0, 0)
    return int(value)


def weighted_overall_score(values: dict[str, float]) -> float:
    return sum(values[metric] * weight for metric, weight in OVERALL_SCORE_WEIGHTS.items())


def normalize_metrics(raw: dict | None, *, total_exams: int | None = None) -> QualityMetrics:
    raw = raw or {}
    values: dict[str, float | None] = {}
    for metric, keys in _METRIC_KEYS.items():
        number = coerce_percentage(_first_present(raw, keys))
        values[metric] = None if number is None else _clamp(metric, number)

    if values["overall_score"] is None and all(values[metric] is not None for metric in QUALITY_METRICS):
        values["overall_score"] = round(weighted_overall_score(values), 2)

    total_time_ms = _read_timing(raw)
    exams = _read_total_exams(raw, total_exams)
    throughput = _read_throughput(raw)
    if throughput is None:
        throughput = exams_per_second(exams, total_time_ms)

    metrics = QualityMetrics(
        **values,
        total_time_ms=total_time_ms,
        total_exams=exams,
        exams_per_second=throughput,
    )
    if metrics.overall_score is not None:
        tier = score_tier(metrics.overall_score)
        metrics.tier = tier
        metrics.grade = tier.grade
    return metrics
