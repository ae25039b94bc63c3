from observerflow.core.exceptions import (
    AppError,
    DistributionInProgressError,
    InputValidationError,
    PollingTimeoutError,
    ScheduleConflictError,
    StrategyInvocationError,
)


def test_app_error_defaults():
    err = AppError("Generic error")
    assert err.status_code == 500
    assert err.details == {}


def test_phase_errors_carry_their_phase():
    err = InputValidationError("Bad year", phase="check", details={"academicYear": "2024"})
    assert err.status_code == 400
    assert err.phase == "check"
    assert err.details == {"phase": "check", "academicYear": "2024"}
    assert isinstance(err, AppError)


def test_strategy_invocation_error_default_message():
    err = StrategyInvocationError(phase="polling")
    assert err.status_code == 502
    assert err.message == "Exam service request failed during polling"


def test_conflict_and_timeout_errors():
    conflict = ScheduleConflictError("Schedule conflicts detected", [{"examName": "Physics Final"}])
    assert conflict.status_code == 409
    assert conflict.details["phase"] == "commit"
    assert conflict.conflicts == [{"examName": "Physics Final"}]

    timeout = PollingTimeoutError("7", 200)
    assert timeout.status_code == 504
    assert timeout.message == "Schedule 7 showed no assignments after 200 poll(s)"


def test_distribution_in_progress_names_holder():
    err = DistributionInProgressError("7", "run-1")
    assert err.status_code == 409
    assert err.details["run_id"] == "run-1"


def test_app_error_handler_renders_message_and_details(client, auth_headers):
    response = client.get("/api/schedule-edits/unknown", headers=auth_headers)
    assert response.status_code == 404
    assert response.json() == {"message": "Schedule edit with id unknown not found", "details": {}}
