import asyncio

import pytest

from observerflow.core.exceptions import InvalidTransitionError, PollingTimeoutError
from observerflow.schemas.schedule import AssignmentStatus
from observerflow.services.completion_poller import CompletionPoller, PollerState


class RecordingSleep:
    def __init__(self, on_call=None):
        self.delays = []
        self.on_call = on_call

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.on_call is not None:
            self.on_call(len(self.delays))


def _poller(exam_service, session, sleep, **kwargs):
    return CompletionPoller(exam_service, session, "7", sleep=sleep, **kwargs)


def test_resolves_on_third_tick(exam_service, fake_service, session):
    fake_service.assignment_states = [
        {"totalExams": 42, "assignedExams": 0},
        {"totalExams": 42, "assignedExams": 0},
        {"totalExams": 42, "assignedExams": 42},
    ]
    sleep = RecordingSleep()
    poller = _poller(exam_service, session, sleep)

    result = asyncio.run(poller.run())

    assert result.state is PollerState.resolved
    assert poller.state is PollerState.resolved
    assert result.attempts == 3
    assert result.assignment_status is AssignmentStatus.fully_assigned
    assert [snapshot.version for snapshot in poller.snapshots] == [1, 2, 3]
    assert sleep.delays == [2.0, 3.0, 3.0]


def test_stays_polling_while_nothing_is_assigned(exam_service, fake_service, session):
    fake_service.assignment_states = [
        {"totalExams": 42, "assignedExams": 0},
        {"totalExams": 42, "assignedExams": 0},
        {"totalExams": 42, "assignedExams": 10},
    ]
    observed = []
    poller = None

    def record_state(_calls):
        observed.append(poller.state)

    poller = _poller(exam_service, session, RecordingSleep(record_state))
    result = asyncio.run(poller.run())

    assert observed == [PollerState.polling, PollerState.polling, PollerState.polling]
    assert result.assignment_status is AssignmentStatus.partially_assigned


def test_tick_error_fails_the_poller(exam_service, fake_service, session):
    fake_service.failures["/assignment-state"] = (500, {"message": "Database unavailable"})
    poller = _poller(exam_service, session, RecordingSleep())

    result = asyncio.run(poller.run())

    assert result.state is PollerState.failed
    assert result.error.message == "Database unavailable"
    assert result.error.details["phase"] == "polling"
    assert len(fake_service.requests_to("/assignment-state")) == 1


def test_budget_exhaustion_times_out(exam_service, fake_service, session):
    fake_service.assignment_states = [{"totalExams": 42, "assignedExams": 0}]
    poller = _poller(exam_service, session, RecordingSleep(), max_attempts=4)

    result = asyncio.run(poller.run())

    assert result.state is PollerState.timed_out
    assert isinstance(result.error, PollingTimeoutError)
    assert result.error.status_code == 504
    assert len(fake_service.requests_to("/assignment-state")) == 4


def test_timed_out_poller_can_resume(exam_service, fake_service, session):
    fake_service.assignment_states = [{"totalExams": 42, "assignedExams": 0}]
    sleep = RecordingSleep()
    poller = _poller(exam_service, session, sleep, max_attempts=2)

    first = asyncio.run(poller.run())
    fake_service.assignment_states = [{"totalExams": 42, "assignedExams": 42}]
    second = asyncio.run(poller.run())

    assert first.state is PollerState.timed_out
    assert second.state is PollerState.resolved
    assert poller.latest_snapshot.version == 3
    assert sleep.delays == [2.0, 3.0, 3.0]


def test_stop_halts_further_ticks(exam_service, fake_service, session):
    fake_service.assignment_states = [{"totalExams": 42, "assignedExams": 0}]
    poller = None

    def stop_on_third_sleep(calls):
        if calls == 3:
            poller.stop()

    poller = _poller(exam_service, session, RecordingSleep(stop_on_third_sleep))
    result = asyncio.run(poller.run())

    assert result.state is PollerState.stopped
    assert result.attempts == 2
    assert len(fake_service.requests_to("/assignment-state")) == 2


def test_resolved_poller_cannot_run_again(exam_service, session):
    poller = _poller(exam_service, session, RecordingSleep())
    asyncio.run(poller.run())

    with pytest.raises(InvalidTransitionError):
        asyncio.run(poller.run())


def test_rejects_empty_budget(exam_service, session):
    with pytest.raises(ValueError):
        CompletionPoller(exam_service, session, "7", max_attempts=0)
