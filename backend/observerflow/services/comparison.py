from __future__ import annotations

import logging
from typing import Any, Union

from observerflow.schemas.metrics import (
    COMPARED_METRICS,
    Comparison,
    ExtendedComparison,
    LabelledMetrics,
    QualityMetrics,
)
from observerflow.schemas.strategy import StrategyKind
from observerflow.services.metric_normalizer import normalize_metrics

logger = logging.getLogger(__name__)

AnyComparison = Union[Comparison, ExtendedComparison]

SIGNIFICANT_QUALITY_GAP = 10.0
MODERATE_QUALITY_GAP = 5.0
SIGNIFICANT_SPEEDUP = 2.0
SIGNIFICANT_TIME_SHARE = 0.2


def pick_winner(entries: list[LabelledMetrics], metric: str = "overall_score") -> str | None:
    """Label with the strictly greatest value; earlier entries win ties."""
    best_label: str | None = None
    best_value: float | None = None
    for entry in entries:
        value = entry.metrics.value(metric)
        if value is None:
            continue
        if best_value is None or value > best_value:
            best_label, best_value = entry.label, value
    return best_label


def improvement_between(baseline: QualityMetrics, challenger: QualityMetrics) -> tuple[dict[str, float], list[str]]:
    improvement: dict[str, float] = {}
    excluded: list[str] = []
    for metric in COMPARED_METRICS:
        base_value = baseline.value(metric)
        challenger_value = challenger.value(metric)
        if base_value is None or challenger_value is None:
            excluded.append(metric)
            continue
        improvement[metric] = challenger_value - base_value
    return improvement, excluded


def speed_ratio_text(reference_ms: float, candidate_ms: float) -> str:
    if candidate_ms < reference_ms:
        return f"{reference_ms / candidate_ms:.1f}x faster"
    return f"{candidate_ms / reference_ms:.1f}x slower"


def _has_timing(metrics: QualityMetrics) -> bool:
    return metrics.total_time_ms > 0


def _two_way_recommendation(baseline: LabelledMetrics, challenger: LabelledMetrics) -> str:
    base_score = baseline.metrics.overall_score
    challenger_score = challenger.metrics.overall_score
    if base_score is None or challenger_score is None:
        return "Unable to generate recommendation - overall score missing"

    score_diff = challenger_score - base_score
    if score_diff > SIGNIFICANT_QUALITY_GAP:
        return f"Use {challenger.label} - significantly better quality"
    if score_diff > MODERATE_QUALITY_GAP:
        return f"Consider {challenger.label} - moderately better quality"
    if score_diff < -SIGNIFICANT_QUALITY_GAP:
        return f"Use {baseline.label} - significantly better quality"
    if score_diff < -MODERATE_QUALITY_GAP:
        return f"Consider {baseline.label} - moderately better quality"

    if _has_timing(baseline.metrics) and _has_timing(challenger.metrics):
        base_ms = baseline.metrics.total_time_ms
        challenger_ms = challenger.metrics.total_time_ms
        faster, slower = (challenger, baseline) if challenger_ms < base_ms else (baseline, challenger)
        if slower.metrics.total_time_ms / faster.metrics.total_time_ms > SIGNIFICANT_SPEEDUP:
            return f"Use {faster.label} - similar quality but faster"
    return "Both algorithms perform similarly - choose based on your priorities"


def aggregate(
    baseline: QualityMetrics,
    challenger: QualityMetrics,
    *,
    baseline_label: str = "Baseline",
    challenger_label: str = "Challenger",
) -> Comparison:
    base_entry = LabelledMetrics(label=baseline_label, metrics=baseline)
    challenger_entry = LabelledMetrics(label=challenger_label, metrics=challenger)
    improvement, excluded = improvement_between(baseline, challenger)
    entries = [base_entry, challenger_entry]

    speed_comparison = None
    if _has_timing(baseline) and _has_timing(challenger):
        speed_comparison = speed_ratio_text(baseline.total_time_ms, challenger.total_time_ms)

    return Comparison(
        baseline=base_entry,
        challenger=challenger_entry,
        improvement=improvement,
        excluded_metrics=excluded,
        winner=pick_winner(entries),
        metric_winners={metric: pick_winner(entries, metric) for metric in improvement},
        speed_comparison=speed_comparison,
        recommendation=_two_way_recommendation(base_entry, challenger_entry),
    )


def speed_ranks(entries: list[LabelledMetrics]) -> dict[str, int]:
    timed = [entry for entry in entries if _has_timing(entry.metrics)]
    ordered = sorted(timed, key=lambda entry: entry.metrics.total_time_ms)
    return {entry.label: position for position, entry in enumerate(ordered, start=1)}


def _three_way_recommendation(entries: list[LabelledMetrics]) -> str:
    available = [
        entry for entry in entries
        if entry.metrics.overall_score is not None and _has_timing(entry.metrics)
    ]
    if not available:
        return "No data available for comparison"
    if len(available) == 1:
        return f"Only {available[0].label} has data available"

    notes: list[str] = []
    for index, first in enumerate(available):
        for second in available[index + 1:]:
            score_diff = second.metrics.overall_score - first.metrics.overall_score
            time_diff = first.metrics.total_time_ms - second.metrics.total_time_ms
            if abs(score_diff) > MODERATE_QUALITY_GAP:
                better, worse = (second, first) if score_diff > 0 else (first, second)
                notes.append(f"{better.label} shows better quality than {worse.label}")
            if abs(time_diff) > first.metrics.total_time_ms * SIGNIFICANT_TIME_SHARE:
                quicker, slower = (second, first) if time_diff > 0 else (first, second)
                notes.append(f"{quicker.label} is significantly faster than {slower.label}")
    if notes:
        return ". ".join(notes) + "."

    best = pick_winner(available)
    fastest = min(available, key=lambda entry: entry.metrics.total_time_ms).label
    if best == fastest:
        return f"{best} shows the best overall performance"
    return f"{best} shows best quality, while {fastest} is fastest"


def aggregate3(
    random: QualityMetrics,
    genetic: QualityMetrics,
    linear_programming: QualityMetrics,
    *,
    applied_algorithm: str | None = None,
) -> ExtendedComparison:
    entries = [
        LabelledMetrics(label=StrategyKind.random.label, metrics=random),
        LabelledMetrics(label=StrategyKind.genetic.label, metrics=genetic),
        LabelledMetrics(label=StrategyKind.linear_programming.label, metrics=linear_programming),
    ]
    primary = entries[0]
    improvements = {
        entry.label: improvement_between(primary.metrics, entry.metrics)[0]
        for entry in entries[1:]
    }

    metric_winners: dict[str, str] = {}
    for metric in COMPARED_METRICS:
        reporting = [entry for entry in entries if entry.metrics.value(metric) is not None]
        if len(reporting) >= 2:
            metric_winners[metric] = pick_winner(reporting, metric)

    timed = [entry for entry in entries if _has_timing(entry.metrics)]
    speed_comparison = {}
    for index, first in enumerate(timed):
        for second in timed[index + 1:]:
            speed_comparison[f"{second.label} vs {first.label}"] = speed_ratio_text(
                first.metrics.total_time_ms,
                second.metrics.total_time_ms,
            )

    return ExtendedComparison(
        primary_baseline=primary.label,
        strategies=entries,
        improvements=improvements,
        winner=pick_winner(entries),
        metric_winners=metric_winners,
        speed_ranks=speed_ranks(entries),
        speed_comparison=speed_comparison,
        recommendation=_three_way_recommendation(entries),
        applied_algorithm=applied_algorithm,
    )


def _exam_count(summary: dict) -> int | None:
    value = summary.get("examCount")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        return None
    return int(value)


def comparison_from_service(payload: dict[str, Any] | None, *, applied_algorithm: str | None = None) -> ExtendedComparison:
    """Rebuild the server's compare-all result as an ExtendedComparison.

    The service keys each strategy block by its display label and keeps the
    timing figures either inside each block or under a shared ``performance``
    map. The exam count, when reported, sits under ``summary.examCount``.
    """
    payload = payload or {}
    performance = payload.get("performance") if isinstance(payload.get("performance"), dict) else {}
    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    exam_count = _exam_count(summary)
    normalized = []
    for kind in (StrategyKind.random, StrategyKind.genetic, StrategyKind.linear_programming):
        block = payload.get(kind.label)
        raw = dict(block) if isinstance(block, dict) else {}
        timing = performance.get(kind.label)
        if isinstance(timing, dict) and "performance" not in raw and "totalTimeMs" not in raw:
            raw["performance"] = timing
        if not raw:
            logger.debug("Service comparison carries no block for %s", kind.label)
        normalized.append(normalize_metrics(raw, total_exams=exam_count))
    return aggregate3(*normalized, applied_algorithm=applied_algorithm)


class ComparisonStore:
    """Holds the latest comparison per operator and schedule for display."""

    def __init__(self) -> None:
        self._comparisons: dict[tuple[str, str], AnyComparison] = {}

    def put(self, user_id: str, schedule_id: str, comparison: AnyComparison) -> None:
        self._comparisons[(user_id, str(schedule_id))] = comparison

    def peek(self, user_id: str, schedule_id: str) -> AnyComparison | None:
        return self._comparisons.get((user_id, str(schedule_id)))

    def take(self, user_id: str, schedule_id: str) -> AnyComparison | None:
        return self._comparisons.pop((user_id, str(schedule_id)), None)

    def clear(self) -> None:
        self._comparisons.clear()
