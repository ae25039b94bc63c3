from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from observerflow.core.exceptions import InvalidTransitionError


class StrategyKind(str, Enum):
    random = "random"
    genetic = "genetic"
    linear_programming = "linear-programming"
    compare = "compare"

    @property
    def is_asynchronous(self) -> bool:
        return self is StrategyKind.genetic

    @property
    def label(self) -> str:
        return STRATEGY_LABELS[self]


STRATEGY_LABELS = {
    StrategyKind.random: "Random Algorithm",
    StrategyKind.genetic: "Genetic Algorithm",
    StrategyKind.linear_programming: "Linear Programming",
    StrategyKind.compare: "Compare & Apply Best",
}


class RunStatus(str, Enum):
    submitted = "Submitted"
    running = "Running"
    completed = "Completed"
    failed = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in {RunStatus.completed, RunStatus.failed}


# Monotonic lifecycle; nothing re-enters Submitted or Running once terminal.
_ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.submitted: {RunStatus.running, RunStatus.failed},
    RunStatus.running: {RunStatus.completed, RunStatus.failed},
    RunStatus.completed: set(),
    RunStatus.failed: set(),
}


class GeneticParameters(BaseModel):
    population_size: int = Field(ge=50, le=500, alias="populationSize")
    generations: int = Field(ge=50, le=500)
    mutation_rate: float = Field(ge=0.05, le=0.5, alias="mutationRate")
    crossover_rate: float = Field(ge=0.5, le=0.9, alias="crossoverRate")
    elitism_rate: float = Field(ge=0.05, le=0.3, alias="elitismRate")
    use_deterministic_init: bool = Field(default=False, alias="useDeterministicInit")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class AssignmentPair(BaseModel):
    exam_id: str = Field(validation_alias=AliasChoices("examId", "examid", "exam_id"), serialization_alias="examId")
    head: str | None = None
    secretary: str | None = None

    @field_validator("exam_id", mode="before")
    @classmethod
    def stringify_id(cls, value) -> str:
        return str(value)

    @field_validator("head", "secretary", mode="before")
    @classmethod
    def stringify_observer(cls, value) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @property
    def is_complete(self) -> bool:
        return bool(self.head) and bool(self.secretary)


class StrategyOutcome(BaseModel):
    strategy: StrategyKind
    status: RunStatus
    message: str | None = None
    assignments: list[AssignmentPair] = Field(default_factory=list)
    total_exams: int | None = None
    assigned_exams: int | None = None
    quality_metrics: dict[str, Any] | None = None
    comparison: dict[str, Any] | None = None
    applied_algorithm: str | None = None


class StrategyRun(BaseModel):
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    schedule_id: str
    strategy: StrategyKind
    parameters: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    status: RunStatus = RunStatus.submitted
    result: dict[str, Any] | None = None
    error: str | None = None

    def advance(self, status: RunStatus) -> None:
        if status == self.status:
            return
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Run {self.run_id} cannot move from {self.status.value} to {status.value}",
                details={"run_id": self.run_id, "from": self.status.value, "to": status.value},
            )
        self.status = status
        if status.is_terminal:
            self.finished_at = datetime.now(timezone.utc)


class DistributionStatus(str, Enum):
    submitted = "Submitted"
    running = "Running"
    completed = "Completed"
    failed = "Failed"
    timed_out = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in {DistributionStatus.completed, DistributionStatus.failed}


class DistributionEvent(BaseModel):
    sequence: int
    run_id: str
    schedule_id: str
    strategy: StrategyKind
    status: DistributionStatus
    result: dict[str, Any] | None = None
    error: str | None = None
    phase: str | None = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DistributionRequest(BaseModel):
    strategy: StrategyKind
    parameters: dict[str, Any] | None = None


class DistributionRunOut(StrategyRun):
    distribution_status: DistributionStatus
    phase: str | None = None
