from __future__ import annotations

import base64

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")
pytest.importorskip("sqlalchemy")
pytest.importorskip("asyncpg")
pytest.importorskip("firebase_admin")

from fastapi import HTTPException
from fastapi.testclient import TestClient

from omnitech import main as main_module


FRAME_B64 = base64.b64encode(b"\xff\xd8fake-jpeg").decode("ascii")


class FakeGeminiClient:
    created: list["FakeGeminiClient"] = []
    response: dict = {}

    def __init__(self) -> None:
        self.submitted: list[tuple[str, bytes, str]] = []
        FakeGeminiClient.created.append(self)

    @classmethod
    def from_settings(cls, _settings) -> "FakeGeminiClient":
        return cls()

    async def submit(self, instructions: str, image: bytes, context: str) -> dict:
        self.submitted.append((instructions, image, context))
        return dict(type(self).response)

    async def summarize(self, log_text: str) -> str:
        return "SUPERVISOR REPORT"


class FakeStore:
    records: list[dict] = []

    async def persist(self, record: dict) -> None:
        FakeStore.records.append(record)


def receive_until(ws, message_type: str, limit: int = 20) -> tuple[dict, list[dict]]:
    seen: list[dict] = []
    for _ in range(limit):
        payload = ws.receive_json()
        seen.append(payload)
        if payload["type"] == message_type:
            return payload, seen
    raise AssertionError(f"{message_type} not received; got {[item['type'] for item in seen]}")


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    FakeGeminiClient.created = []
    FakeGeminiClient.response = {
        "status": "SAFE",
        "headline": "Panel Isolated",
        "reasoning": "The breaker is off and the panel is dry.",
        "action_required": "Proceed with diagnosis.",
    }
    FakeStore.records = []

    async def fake_init_db() -> None:
        return None

    async def fake_resolve_identity(token: str, *, allow_anonymous: bool):
        if not token:
            return None
        if token == "bad-token":
            raise HTTPException(status_code=401, detail="Invalid Firebase token")
        return "firebase-user"

    monkeypatch.setattr(main_module, "GeminiVisionClient", FakeGeminiClient)
    monkeypatch.setattr(main_module, "SqlEventStore", FakeStore)
    monkeypatch.setattr(main_module, "init_firebase", lambda: None)
    monkeypatch.setattr(main_module, "init_db", fake_init_db)
    monkeypatch.setattr(main_module, "resolve_identity", fake_resolve_identity)
    monkeypatch.setattr(main_module.settings, "api_key", "test-key")
    monkeypatch.setattr(main_module.settings, "offline_mode", False)
    monkeypatch.setattr(main_module.settings, "use_vertex", False)
    monkeypatch.setattr(main_module.settings, "cooldown_seconds", 0.0)
    monkeypatch.setattr(main_module.settings, "persist_events", True)

    with TestClient(main_module.app) as test_client:
        yield test_client


def test_health_and_config(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}

    config = client.get("/api/config").json()

    assert config["modes"] == ["safety_check", "diagnosis", "repair_guide"]
    assert config["inference_configured"] is True


def test_anonymous_connect_reports_idle_status(client: TestClient) -> None:
    with client.websocket_connect("/ws/field") as ws:
        status = ws.receive_json()
        ws.send_json({"type": "client.stop"})
        summary, _ = receive_until(ws, "server.summary")

    assert status["type"] == "server.status"
    assert status["connected"] is True
    assert status["anonymous"] is True
    assert status["state"] == "IDLE"
    assert status["enabled_modes"] == ["safety_check", "diagnosis"]
    assert summary["state"] == "IDLE"


def test_invalid_token_is_rejected(client: TestClient) -> None:
    with client.websocket_connect("/ws/field?token=bad-token") as ws:
        payload = ws.receive_json()

    assert payload == {"type": "error", "message": "Invalid Firebase token"}


def test_analyze_without_frame_reports_capture_error(client: TestClient) -> None:
    with client.websocket_connect("/ws/field") as ws:
        ws.receive_json()
        ws.send_json({"type": "client.analyze", "mode": "safety_check"})
        result, seen = receive_until(ws, "server.result")
        ws.send_json({"type": "client.stop"})
        summary, _ = receive_until(ws, "server.summary")

    assert result["outcome"] == "error"
    assert result["error_kind"] == "CaptureUnavailable"
    assert any(item["type"] == "server.log" and item["source"] == "ERROR" for item in seen)
    assert FakeGeminiClient.created[0].submitted == []
    assert summary["state"] == "IDLE"


def test_safety_check_streams_result_then_speech(client: TestClient) -> None:
    with client.websocket_connect("/ws/field?token=good-token") as ws:
        status = ws.receive_json()
        ws.send_json({"type": "client.video", "data_b64": FRAME_B64})
        ws.send_json({"type": "client.analyze", "mode": "safety_check", "text": "Breaker panel"})
        result, _ = receive_until(ws, "server.result")
        speech, _ = receive_until(ws, "server.speech")
        ws.send_json({"type": "client.stop"})
        summary, _ = receive_until(ws, "server.summary")

    fake = FakeGeminiClient.created[0]
    assert status["anonymous"] is False
    assert result["outcome"] == "success"
    assert result["result"]["status"] == "SAFE"
    assert speech["text"] == "Panel Isolated. Proceed with diagnosis."
    assert fake.submitted[0][1] == b"\xff\xd8fake-jpeg"
    assert fake.submitted[0][2] == "User Note: Breaker panel"
    assert summary["state"] == "SAFE"
    assert "repair_guide" in summary["enabled_modes"]
    assert [record["status"] for record in FakeStore.records] == ["SAFE"]


def test_repair_guide_before_safety_check_is_rejected(client: TestClient) -> None:
    with client.websocket_connect("/ws/field") as ws:
        ws.receive_json()
        ws.send_json({"type": "client.video", "data_b64": FRAME_B64})
        ws.send_json({"type": "client.analyze", "mode": "repair_guide"})
        rejected, _ = receive_until(ws, "server.rejected")
        ws.send_json({"type": "client.stop"})
        receive_until(ws, "server.summary")

    assert rejected["error_kind"] == "ModeLocked"
    assert FakeGeminiClient.created[0].submitted == []


def test_invalid_messages_report_errors(client: TestClient) -> None:
    with client.websocket_connect("/ws/field") as ws:
        ws.receive_json()
        ws.send_json({"type": "client.analyze", "mode": "demolition"})
        bad_mode = ws.receive_json()
        ws.send_json({"type": "client.video", "data_b64": "not-base64!!"})
        bad_frame = ws.receive_json()
        ws.send_json({"type": "client.dance"})
        bad_type = ws.receive_json()
        ws.send_json({"type": "client.stop"})
        receive_until(ws, "server.summary")

    assert bad_mode == {"type": "error", "message": "Unsupported operating mode: demolition"}
    assert "Invalid base64 payload" in bad_frame["message"]
    assert bad_type["message"] == "Unsupported message type: client.dance"


def test_report_request_returns_generated_report(client: TestClient) -> None:
    with client.websocket_connect("/ws/field") as ws:
        ws.receive_json()
        ws.send_json({"type": "client.video", "data_b64": FRAME_B64})
        ws.send_json({"type": "client.analyze", "mode": "safety_check"})
        receive_until(ws, "server.speech")
        ws.send_json({"type": "client.analyze", "mode": "diagnosis"})
        receive_until(ws, "server.speech")
        ws.send_json({"type": "client.report"})
        report, _ = receive_until(ws, "server.report")
        ws.send_json({"type": "client.stop"})
        receive_until(ws, "server.summary")

    assert report["text"] == "SUPERVISOR REPORT"
    assert report["local"] is False
