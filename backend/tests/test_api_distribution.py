import pytest
from starlette.websockets import WebSocketDisconnect

GENETIC_PARAMS = {
    "populationSize": 100,
    "generations": 100,
    "mutationRate": 0.1,
    "crossoverRate": 0.8,
    "elitismRate": 0.1,
}


def _start(client, auth_headers, strategy, parameters=None):
    return client.post(
        "/api/schedules/7/distributions",
        json={"strategy": strategy, "parameters": parameters},
        headers=auth_headers,
    )


def test_random_distribution_completes(client, auth_headers, fake_service):
    response = _start(client, auth_headers, "random")

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "Completed"
    assert body["distribution_status"] == "Completed"
    assert body["result"]["assignmentStatus"] == "Partially Assigned"
    assert body["result"]["qualityMetrics"]["tier"] == "poor"

    submitted = fake_service.requests_to("/assign-random")
    assert len(submitted) == 1
    assert submitted[0].headers["Authorization"].startswith("Bearer ")

    events = client.get(f"/api/distributions/{body['run_id']}/events", headers=auth_headers)
    assert [event["status"] for event in events.json()] == ["Submitted", "Running", "Completed"]


def test_genetic_distribution_streams_until_completed(client, auth_headers, admin_token):
    response = _start(client, auth_headers, "genetic", GENETIC_PARAMS)
    assert response.status_code == 202
    run_id = response.json()["run_id"]
    assert response.json()["parameters"]["populationSize"] == 100

    with client.websocket_connect(f"/api/distributions/{run_id}/ws?token={admin_token}") as websocket:
        statuses = [websocket.receive_json()["status"] for _ in range(3)]

    assert statuses == ["Submitted", "Running", "Completed"]
    run = client.get(f"/api/distributions/{run_id}", headers=auth_headers).json()
    assert run["status"] == "Completed"
    assert run["result"]["assignmentStatus"] == "Fully Assigned"


def test_genetic_distribution_requires_parameters(client, auth_headers, fake_service):
    response = _start(client, auth_headers, "genetic", {"populationSize": 5})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid genetic algorithm parameters"
    assert body["details"]["phase"] == "submission"
    assert fake_service.requests_to("/assign-genetic") == []


def test_unknown_strategy_is_rejected(client, auth_headers):
    response = _start(client, auth_headers, "simulated-annealing")
    assert response.status_code == 422


def test_exam_service_failure_is_reported(client, auth_headers, fake_service):
    fake_service.failures["/assign-lp"] = (500, {"message": "Solver crashed"})

    response = _start(client, auth_headers, "linear-programming")

    assert response.status_code == 502
    body = response.json()
    assert body["message"] == "Solver crashed"
    run = client.get(f"/api/distributions/{body['details']['run_id']}", headers=auth_headers).json()
    assert run["status"] == "Failed"
    assert run["phase"] == "submission"


def test_stop_releases_the_schedule(client, auth_headers, fake_service):
    fake_service.assignment_states = [{"totalExams": 42, "assignedExams": 0}]
    run_id = _start(client, auth_headers, "genetic", GENETIC_PARAMS).json()["run_id"]

    stopped = client.post(f"/api/distributions/{run_id}/stop", headers=auth_headers)

    assert stopped.status_code == 200
    assert stopped.json()["status"] == "Failed"
    assert stopped.json()["error"] == "Run stopped before completion"
    assert _start(client, auth_headers, "random").status_code == 202


def test_resume_requires_timed_out_run(client, auth_headers):
    run_id = _start(client, auth_headers, "random").json()["run_id"]

    response = client.post(f"/api/distributions/{run_id}/resume", headers=auth_headers)

    assert response.status_code == 409


def test_compare_result_can_be_fetched_once(client, auth_headers):
    response = _start(client, auth_headers, "compare")
    assert response.status_code == 202
    assert response.json()["result"]["appliedAlgorithm"] == "Linear Programming"

    peeked = client.get("/api/schedules/7/comparison?consume=false", headers=auth_headers)
    assert peeked.status_code == 200
    assert peeked.json()["winner"] == "Linear Programming"

    taken = client.get("/api/schedules/7/comparison", headers=auth_headers)
    assert taken.status_code == 200
    assert taken.json()["applied_algorithm"] == "Linear Programming"

    assert client.get("/api/schedules/7/comparison", headers=auth_headers).status_code == 404


def test_observer_cannot_distribute(client, observer_token):
    response = _start(client, {"Authorization": f"Bearer {observer_token}"}, "random")
    assert response.status_code == 403


def test_invalid_token_is_unauthorized(client):
    response = _start(client, {"Authorization": "Bearer not-a-token"}, "random")
    assert response.status_code == 401


def test_unknown_run_is_not_found(client, auth_headers):
    response = client.get("/api/distributions/missing", headers=auth_headers)
    assert response.status_code == 404


def test_websocket_rejects_observer(client, observer_token):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/api/distributions/missing/ws?token={observer_token}"):
            pass
    assert exc_info.value.code == 1008


def test_websocket_unknown_run(client, admin_token):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/api/distributions/missing/ws?token={admin_token}"):
            pass
    assert exc_info.value.code == 4404
