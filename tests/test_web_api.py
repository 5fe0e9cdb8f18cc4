"""
Tests for the Web Backend
=========================

Tests for the REST routes and the OODA event stream, run against an
in-memory engine through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from forgeheal.config import HealConfig
from forgeheal.engine import create_engine
from forgeheal.file_bridge import InMemoryFileBridge
from forgeheal.web.backend.main import create_app


SAVE_BUTTON = "components/header/save-button.tsx"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def engine(sample_files):
    return create_engine(HealConfig(), InMemoryFileBridge(sample_files))


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


# =============================================================================
# REST Tests
# =============================================================================

class TestRestRoutes:
    """Tests for the /api routes."""

    def test_health_check(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "forgeheal-backend", "engine": True}

    def test_list_tools(self, client):
        tools = client.get("/api/tools").json()
        assert len(tools) == 14
        assert {"name", "description", "category", "risk_level", "input_schema"} <= set(tools[0])

    def test_call_tool(self, client):
        response = client.post("/api/tools/self_analyze_component", json={"file_path": SAVE_BUTTON})
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["exports"] == ["SaveButton"]

    def test_call_tool_without_body(self, client):
        body = client.post("/api/tools/self_get_stats").json()
        assert body["success"] is True
        assert body["data"]["memory"]["total_patterns"] == 0

    def test_tool_errors_are_not_http_errors(self, client):
        response = client.post("/api/tools/self_analyze_component", json={})
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_tool_calls_persist_finished_tasks(self, engine, client):
        calls = []

        async def persist_finished():
            calls.append(len(engine.controller.get_history()))
            return 0

        engine.persist_finished = persist_finished
        client.post("/api/tools/self_start_improvement", json={"description": "Save button misaligned in header"})
        assert calls == [1]

    def test_unknown_tool(self, client):
        assert client.post("/api/tools/format_disk", json={}).status_code == 404

    def test_tasks(self, client):
        opened = client.post("/api/tools/ooda_start_cycle", json={
            "issue": "Save button misaligned in header",
            "category": "ui_bug",
            "affected_files": [SAVE_BUTTON],
        }).json()
        cycle_id = opened["data"]["cycle_id"]

        tasks = client.get("/api/tasks").json()
        assert [t["id"] for t in tasks["active"]] == [cycle_id]
        assert tasks["history"] == []

        task = client.get(f"/api/tasks/{cycle_id}").json()
        assert task["id"] == cycle_id
        assert task["status"] == "acting"

    def test_missing_task(self, client):
        assert client.get("/api/tasks/missing").status_code == 404

    def test_patterns(self, client):
        body = client.get("/api/patterns").json()
        assert body["patterns"] == []
        assert body["stats"]["total_patterns"] == 0

    def test_history_without_database(self, client):
        assert client.get("/api/history").json() == []

    def test_no_engine(self):
        client = TestClient(create_app())
        assert client.get("/").json()["engine"] is False
        assert client.get("/api/tasks").status_code == 503


# =============================================================================
# Event Stream Tests
# =============================================================================

class TestEventStream:
    """Tests for the /ws/events websocket."""

    def test_stream_forwards_cycle_events(self, client):
        with client.websocket_connect("/ws/events") as ws:
            assert ws.receive_json() == {"type": "connected", "active_tasks": 0}

            client.post("/api/tools/ooda_start_cycle", json={
                "issue": "Save button misaligned in header",
                "category": "ui_bug",
                "affected_files": [SAVE_BUTTON],
            })

            message = ws.receive_json()
            assert message["type"] == "ooda_event"
            assert message["event"]["phase"] == "observe"
            assert message["event"]["status"] == "started"
