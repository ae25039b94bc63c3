from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

QUALITY_METRICS = ("coverage", "workload_balance", "fairness", "efficiency")
COMPARED_METRICS = ("overall_score",) + QUALITY_METRICS

OVERALL_SCORE_WEIGHTS = {
    "coverage": 0.4,
    "workload_balance": 0.3,
    "fairness": 0.2,
    "efficiency": 0.1,
}


class ScoreTier(str, Enum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    poor = "poor"
    critical = "critical"

    @property
    def color(self) -> str:
        return _TIER_PRESENTATION[self][0]

    @property
    def grade(self) -> str:
        return _TIER_PRESENTATION[self][1]


_TIER_PRESENTATION = {
    ScoreTier.excellent: ("#4caf50", "A"),
    ScoreTier.good: ("#8bc34a", "B"),
    ScoreTier.fair: ("#ff9800", "C"),
    ScoreTier.poor: ("#ff5722", "D"),
    ScoreTier.critical: ("#f44336", "F"),
}


class QualityMetrics(BaseModel):
    coverage: float | None = Field(default=None, ge=0.0, le=100.0)
    workload_balance: float | None = Field(default=None, ge=0.0, le=100.0)
    fairness: float | None = Field(default=None, ge=0.0, le=100.0)
    efficiency: float | None = Field(default=None, ge=0.0, le=100.0)
    overall_score: float | None = Field(default=None, ge=0.0, le=100.0)
    total_time_ms: float = Field(default=0.0, ge=0.0)
    total_exams: int = Field(default=0, ge=0)
    exams_per_second: float = Field(default=0.0, ge=0.0)
    tier: ScoreTier | None = None
    grade: str | None = None

    def value(self, metric: str) -> float | None:
        return getattr(self, metric)

    def reported_metrics(self) -> set[str]:
        return {metric for metric in COMPARED_METRICS if self.value(metric) is not None}


class LabelledMetrics(BaseModel):
    label: str
    metrics: QualityMetrics


class Comparison(BaseModel):
    baseline: LabelledMetrics
    challenger: LabelledMetrics
    improvement: dict[str, float] = Field(default_factory=dict)
    excluded_metrics: list[str] = Field(default_factory=list)
    winner: str | None = None
    metric_winners: dict[str, str] = Field(default_factory=dict)
    speed_comparison: str | None = None
    recommendation: str


class ExtendedComparison(BaseModel):
    primary_baseline: str
    strategies: list[LabelledMetrics]
    improvements: dict[str, dict[str, float]] = Field(default_factory=dict)
    winner: str | None = None
    metric_winners: dict[str, str] = Field(default_factory=dict)
    speed_ranks: dict[str, int] = Field(default_factory=dict)
    speed_comparison: dict[str, str] = Field(default_factory=dict)
    recommendation: str
    applied_algorithm: str | None = None


class ComparisonRequest(BaseModel):
    baseline_label: str = Field(default="Baseline", min_length=1, max_length=100)
    challenger_label: str = Field(default="Challenger", min_length=1, max_length=100)
    baseline: dict[str, Any]
    challenger: dict[str, Any]
