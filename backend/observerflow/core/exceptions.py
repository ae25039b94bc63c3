from typing import Literal

Phase = Literal["submission", "polling", "comparison", "check", "commit", "view"]


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class PhaseError(AppError):
    """An error that names the workflow phase it was raised in."""
    def __init__(self, message: str, *, phase: Phase, status_code: int, details: dict = None):
        self.phase = phase
        merged = {"phase": phase}
        merged.update(details or {})
        super().__init__(message, status_code=status_code, details=merged)


class InputValidationError(PhaseError):
    """Raised locally, before any network round trip, for malformed operator input."""
    def __init__(self, message: str, *, phase: Phase = "submission", details: dict = None):
        super().__init__(message, phase=phase, status_code=400, details=details)


class AuthorizationError(PhaseError):
    """Raised when the caller lacks the role an operation requires."""
    def __init__(self, message: str = "Insufficient permissions", *, phase: Phase = "submission"):
        super().__init__(message, phase=phase, status_code=403)


class StrategyInvocationError(PhaseError):
    """Raised when the exam service cannot be reached or rejects a request."""
    def __init__(self, message: str | None = None, *, phase: Phase = "submission", details: dict = None):
        super().__init__(message or f"Exam service request failed during {phase}", phase=phase, status_code=502, details=details)


class ScheduleConflictError(PhaseError):
    """Raised when a schedule edit collides with existing exam bookings."""
    def __init__(self, message: str, conflicts: list, *, phase: Phase = "commit"):
        self.conflicts = conflicts
        super().__init__(message, phase=phase, status_code=409, details={"conflicts": conflicts})


class PollingTimeoutError(PhaseError):
    """Raised when the poll budget is exhausted before the run resolves."""
    def __init__(self, schedule_id: str, attempts: int):
        self.schedule_id = schedule_id
        self.attempts = attempts
        super().__init__(
            f"Schedule {schedule_id} showed no assignments after {attempts} poll(s)",
            phase="polling",
            status_code=504,
            details={"schedule_id": schedule_id, "attempts": attempts},
        )


class DistributionInProgressError(AppError):
    """Raised when a schedule already has an active strategy run."""
    def __init__(self, schedule_id: str, run_id: str):
        super().__init__(
            f"Schedule {schedule_id} already has an active distribution run",
            status_code=409,
            details={"phase": "submission", "schedule_id": schedule_id, "run_id": run_id},
        )


class InvalidTransitionError(AppError):
    """Raised when a workflow is asked to move to a state it cannot reach."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
