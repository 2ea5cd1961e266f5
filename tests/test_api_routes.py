import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

import pytest
import requests

from timetable_sync import create_app
from timetable_sync.services.clients import time_service, upstream_client
from timetable_sync.services.core.runtime import get_runtime


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class TestConfig:
    TESTING = True
    TIMETABLE_UPSTREAM_URL = "http://upstream.test/plan"
    SUBSTITUTION_UPSTREAM_URL = "http://upstream.test/vertretungsplan"
    REMOTE_SYNC_ENABLED = False


@pytest.fixture
def app(tmp_path):
    class AppConfig(TestConfig):
        SNAPSHOT_FILE = str(tmp_path / "snapshot.json")

    app = create_app(AppConfig)
    yield app
    get_runtime(app).shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def upstream(monkeypatch):
    """Подменяет requests.get: url -> FakeResponse или исключение."""
    responses = {}

    def fake_get(url, headers=None, timeout=None):
        response = responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(upstream_client.requests, "get", fake_get)
    return responses


def test_proxy_passes_body_through(client, upstream, structured_payload):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(payload={"structured": structured_payload})

    response = client.get("/api/timetable")

    assert response.status_code == 200
    assert response.get_json()["structured"]["days"][0] == "Montag"


def test_proxy_propagates_upstream_status(client, upstream):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(status_code=404)

    response = client.get("/api/timetable")

    assert response.status_code == 404
    assert "404" in response.get_json()["error"]


def test_proxy_timeout_is_gateway_timeout(client, upstream):
    upstream[TestConfig.SUBSTITUTION_UPSTREAM_URL] = requests.exceptions.Timeout()

    response = client.get("/api/substitute-plan")

    assert response.status_code == 504


def test_normalized_timetable_with_substitutions(client, upstream, structured_payload):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(payload=structured_payload)
    upstream[TestConfig.SUBSTITUTION_UPSTREAM_URL] = FakeResponse(payload={"substitutions": [
        {"dayIndex": 0, "periodIndex": 0, "cancelled": True, "info": "Teacher ill"},
    ]})

    body = client.get("/api/timetable/normalized").get_json()

    lesson = body["data"]["monday"]["lessons"][0]
    assert body["isFallback"] is False
    assert body["statusMessage"] == ""
    assert lesson["startTime"] == "08:10"
    assert lesson["isCancelled"] is True
    assert "Teacher ill" in lesson["notes"]


def test_normalized_timetable_falls_back_on_bad_json(client, upstream):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(text="<html>")

    body = client.get("/api/timetable/normalized").get_json()

    assert body["isFallback"] is True
    assert body["reason"] == "parse_error"
    assert body["isPermanentFailure"] is True
    assert body["data"]["monday"]["date"] == "2025-05-26"


def test_normalized_timetable_falls_back_on_unreachable_upstream(client, upstream):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = requests.exceptions.ConnectionError("refused")

    body = client.get("/api/timetable/normalized").get_json()

    assert body["reason"] == "network_error"
    assert body["isPermanentFailure"] is False


def test_current_lesson(client, upstream, monkeypatch, structured_payload):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(payload=structured_payload)
    upstream[TestConfig.SUBSTITUTION_UPSTREAM_URL] = FakeResponse(status_code=500)
    monday_morning = time_service.time_info_from_datetime(datetime(2025, 5, 26, 8, 20))
    monkeypatch.setattr(time_service, "get_current_day_and_time", lambda: monday_morning)

    body = client.get("/api/timetable/current").get_json()

    assert body["isCurrentLesson"] is True
    assert body["dayName"] == "monday"
    assert body["lesson"]["subject"] == "M"


def test_normalized_timetable_is_served_from_cache(client, upstream, monkeypatch, structured_payload):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(payload=structured_payload)
    upstream[TestConfig.SUBSTITUTION_UPSTREAM_URL] = FakeResponse(payload={"substitutions": []})
    hits = []
    fake_get = upstream_client.requests.get

    def counting_get(url, headers=None, timeout=None):
        hits.append(url)
        return fake_get(url, headers=headers, timeout=timeout)

    monkeypatch.setattr(upstream_client.requests, "get", counting_get)

    first = client.get("/api/timetable/normalized").get_json()
    second = client.get("/api/timetable/normalized").get_json()

    assert hits.count(TestConfig.TIMETABLE_UPSTREAM_URL) == 1
    assert first["data"] == second["data"]
    assert second["isFallback"] is False


def test_normalized_timetable_survives_outage_after_success(client, upstream, app, structured_payload):
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = FakeResponse(payload=structured_payload)
    upstream[TestConfig.SUBSTITUTION_UPSTREAM_URL] = FakeResponse(payload={"substitutions": []})
    client.get("/api/timetable/normalized")
    upstream[TestConfig.TIMETABLE_UPSTREAM_URL] = requests.exceptions.ConnectionError("refused")

    body = client.get("/api/timetable/normalized?refresh=1").get_json()

    assert body["isFallback"] is False
    assert body["data"]["monday"]["lessons"][0]["subject"] == "M"
    assert get_runtime(app).reconciler.peek("timetable") is not None


def test_subjects_and_grades(client):
    assert client.get("/api/subjects").get_json() == []

    created = client.post("/api/subjects", json={"name": " Mathe "})
    assert created.status_code == 201
    subject_id = created.get_json()["id"]

    grade = client.post(f"/api/subjects/{subject_id}/grades", json={"value": "2", "type": "Test", "date": "2025-05-26"})
    assert grade.status_code == 201
    assert grade.get_json()["value"] == 2.0

    subjects = client.get("/api/subjects").get_json()
    assert [s["name"] for s in subjects] == ["Mathe"]
    assert subjects[0]["grades"][0]["type"] == "Test"

    grade_id = grade.get_json()["id"]
    assert client.delete(f"/api/subjects/{subject_id}/grades/{grade_id}").status_code == 204
    assert client.delete(f"/api/subjects/{subject_id}").status_code == 204
    assert client.get("/api/subjects").get_json() == []


def test_subject_errors(client):
    assert client.post("/api/subjects", json={"name": "  "}).status_code == 400
    assert client.post("/api/subjects", json={}).status_code == 400
    assert client.delete("/api/subjects/missing").status_code == 404
    assert client.post("/api/subjects/missing/grades", json={"value": 1}).status_code == 404
    assert client.delete("/api/subjects/missing/grades/g1").status_code == 404


def test_subjects_persist_in_snapshot(app, client, tmp_path):
    client.post("/api/subjects", json={"name": "Physik"})
    get_runtime(app).shutdown()

    class RestartedConfig(TestConfig):
        SNAPSHOT_FILE = str(tmp_path / "snapshot.json")

    restarted = create_app(RestartedConfig)
    try:
        names = [s["name"] for s in restarted.test_client().get("/api/subjects").get_json()]
    finally:
        get_runtime(restarted).shutdown()
    assert names == ["Physik"]


def test_status(client, monkeypatch):
    info = time_service.time_info_from_datetime(datetime(2025, 5, 27, 9, 0, 5), source="network")
    monkeypatch.setattr(time_service, "get_current_day_and_time", lambda: info)

    body = client.get("/api/status").get_json()

    assert body == {"day": "tuesday", "date": "2025-05-27", "time": "09:00:05",
                    "timeSource": "network", "remoteSyncEnabled": False}


def test_file_logging_outside_testing(tmp_path):
    class ProductionConfig(TestConfig):
        TESTING = False
        LOG_DIR = str(tmp_path / "logs")
        SNAPSHOT_FILE = str(tmp_path / "data" / "snapshot.json")

    app = create_app(ProductionConfig)
    get_runtime(app).shutdown()
    package_logger = logging.getLogger("timetable_sync")
    handlers = [h for h in package_logger.handlers if isinstance(h, RotatingFileHandler)]
    try:
        assert (tmp_path / "logs" / "app.log").exists()
        assert (tmp_path / "data").is_dir()
        assert handlers and handlers[0] in app.logger.handlers
    finally:
        for handler in handlers:
            package_logger.removeHandler(handler)
            app.logger.removeHandler(handler)
            handler.close()
