import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from observerflow.core.config import Settings
from observerflow.core.security import SessionContext, create_access_token
from observerflow.main import create_app
from observerflow.services.exam_service import ExamServiceClient

EXAM_SERVICE_URL = "http://exam-service.test/api"


class FakeExamService:
    """In-process stand-in for the exam service, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.schedules = {
            "7": {
                "uploadId": 7,
                "fileName": "final-exams.xlsx",
                "academicYear": "2024-2025",
                "semester": "Second",
                "examType": "Final",
                "examCount": 42,
                "assignedExams": 0,
            }
        }
        self.exams = {
            "7": [
                {
                    "examId": 12,
                    "courseName": "Physics",
                    "examName": "Physics Final",
                    "examDate": "2025-01-15T00:00:00.000Z",
                    "startTime": "13:00",
                    "endTime": "15:00",
                    "roomNum": "B-201",
                    "numOfStudents": 35,
                },
                {
                    "examId": 11,
                    "courseName": "Calculus",
                    "examName": "Calculus Final",
                    "examDate": "2024-02-29T00:00:00.000Z",
                    "startTime": "09:00",
                    "endTime": "11:00",
                    "roomNum": "A-101",
                    "numOfStudents": 40,
                    "headObserver": "Dr. Haddad",
                    "secretary": "Ms. Odeh",
                },
            ]
        }
        self.strategy_responses = {
            "assign-random": (
                200,
                {
                    "message": "Random assignment completed",
                    "assignments": [
                        {"examId": 11, "head": "Dr. Haddad", "secretary": "Ms. Odeh"},
                        {"examId": 12, "head": "Dr. Saleh", "secretary": None},
                    ],
                    "totalExams": 2,
                    "assignedExams": 1,
                    "qualityMetrics": {
                        "coverage": {"percentage": 50.0},
                        "workloadBalance": {"percentage": 80.0},
                        "fairness": {"percentage": 90.0},
                        "efficiency": "70%",
                        "performance": {"totalTimeMs": 500},
                    },
                },
            ),
            "assign-lp": (
                200,
                {
                    "message": "Linear programming assignment completed",
                    "assignments": [
                        {"examId": 11, "head": "Dr. Haddad", "secretary": "Ms. Odeh"},
                        {"examId": 12, "head": "Dr. Saleh", "secretary": "Mr. Nasser"},
                    ],
                    "totalExams": 2,
                    "assignedExams": 2,
                },
            ),
            "assign-genetic": (200, {"message": "Genetic algorithm started", "status": "running"}),
            "compare": (
                200,
                {
                    "message": "Comparison completed and best results applied",
                    "appliedAlgorithm": "Linear Programming",
                    "comparison": {
                        "Random Algorithm": {"overallScore": "72.5%", "coverage": "80.0%", "efficiency": "65.0%"},
                        "Genetic Algorithm": {"overallScore": "84.0%", "coverage": "95.0%", "efficiency": "70.0%"},
                        "Linear Programming": {"overallScore": "91.0%", "coverage": "100.0%", "efficiency": "75.0%"},
                        "performance": {
                            "Random Algorithm": {"totalTimeMs": 100},
                            "Genetic Algorithm": {"totalTimeMs": 4000},
                            "Linear Programming": {"totalTimeMs": 900},
                        },
                    },
                },
            ),
        }
        self.assignment_states = [{"totalExams": 42, "assignedExams": 42, "assignmentStatus": "Fully Assigned"}]
        self.commit_conflicts: list[dict] = []
        self.failures: dict[str, tuple[int, dict]] = {}
        self.healthy = True
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        for suffix, (status_code, body) in self.failures.items():
            if path.endswith(suffix):
                return httpx.Response(status_code, json=body)

        parts = [part for part in path.split("/") if part]
        if path == "/health":
            return httpx.Response(200 if self.healthy else 503, json={"status": "ok" if self.healthy else "down"})
        if parts[:2] == ["assignments", "schedules"] and request.method == "POST":
            status_code, body = self.strategy_responses[parts[3]]
            return httpx.Response(status_code, json=body)
        if path == "/exams/schedules/all":
            return httpx.Response(
                200,
                json={"schedules": [{"scheduleInfo": schedule} for schedule in self.schedules.values()]},
            )
        if parts[:2] == ["exams", "schedules"] and len(parts) == 4 and parts[3] == "assignment-state":
            state = self.assignment_states.pop(0) if len(self.assignment_states) > 1 else self.assignment_states[0]
            return httpx.Response(200, json=state)
        if parts[:2] == ["exams", "schedules"] and len(parts) == 4 and parts[3] == "check":
            return httpx.Response(200, json=self._year_check(parts[2], json.loads(request.content)))
        if parts[:2] == ["exams", "schedules"] and len(parts) == 3 and request.method == "PUT":
            return self._commit(parts[2], json.loads(request.content))
        if parts[:2] == ["exams", "schedules"] and len(parts) == 3:
            return httpx.Response(200, json={"exams": self.exams.get(parts[2], [])})
        return httpx.Response(404, json={"message": "Not found"})

    def _year_check(self, schedule_id: str, body: dict) -> dict:
        schedule = self.schedules[schedule_id]
        if body["academicYear"] == schedule["academicYear"]:
            return {"yearChanged": False, "requiresConfirmation": False, "affectedExams": [], "hasLeapYearDates": False}
        affected = [
            {
                "examid": exam["examId"],
                "coursename": exam["courseName"],
                "examname": exam["examName"],
                "examdate": exam["examDate"],
                "isleapyeardate": exam["examDate"].startswith("2024-02-29"),
            }
            for exam in self.exams.get(schedule_id, [])
        ]
        return {
            "yearChanged": True,
            "requiresConfirmation": True,
            "affectedExams": affected,
            "hasLeapYearDates": any(item["isleapyeardate"] for item in affected),
        }

    def _commit(self, schedule_id: str, body: dict) -> httpx.Response:
        if self.commit_conflicts:
            return httpx.Response(
                409,
                json={"message": "Schedule conflicts detected", "conflicts": self.commit_conflicts},
            )
        schedule = self.schedules[schedule_id]
        schedule.update(
            {"academicYear": body["academicYear"], "semester": body["semester"], "examType": body["examType"]}
        )
        return httpx.Response(200, json={"schedule": schedule})


@pytest.fixture()
def settings():
    return Settings(
        exam_service_url=EXAM_SERVICE_URL,
        jwt_secret_key="test-secret",
        poll_initial_delay_seconds=0,
        poll_interval_seconds=0,
        poll_max_attempts=5,
    )


@pytest.fixture()
def fake_service():
    return FakeExamService()


@pytest.fixture()
def exam_service(fake_service):
    client = ExamServiceClient(EXAM_SERVICE_URL, transport=fake_service.transport())
    yield client
    asyncio.run(client.aclose())


@pytest.fixture()
def session():
    return SessionContext(token="token-abc", user_id="user-1", role="admin")


@pytest.fixture()
def admin_token(settings):
    return create_access_token("user-1", "admin", settings=settings)


@pytest.fixture()
def observer_token(settings):
    return create_access_token("user-2", "observer", settings=settings)


@pytest.fixture()
def client(settings, fake_service):
    app = create_app(settings=settings, transport=fake_service.transport())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
