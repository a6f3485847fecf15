"""Control API tests: auth, envelopes and status codes."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi.testclient import TestClient

from feedrunner.api import create_app
from feedrunner.config import Settings

HEADERS = {"x-runner-token": "secret"}


class FakeController:
    def __init__(self) -> None:
        self.session = None
        self.calls: List[str] = []
        self.automation_payloads: List[Dict[str, Any]] = []
        self.running = False

    def start(self) -> Dict[str, Any]:
        self.calls.append("start")
        if self.running:
            return {"success": False, "error": "Runner already active", "hint": "Stop first."}
        self.running = True
        return {"success": True, "message": "Runner started and ready", "sessionId": "session-1"}

    def stop(self) -> Dict[str, Any]:
        self.calls.append("stop")
        return {"success": True, "stats": {"itemsActedOn": 2}, "artifacts": {"traceFile": "/runs/session-1/trace.zip"}}

    def pause(self) -> Dict[str, Any]:
        self.calls.append("pause")
        return {"success": False, "error": "No active automation to pause", "hint": "Start automation before pausing."}

    def resume(self) -> Dict[str, Any]:
        self.calls.append("resume")
        return {"success": True, "message": "Automation resumed"}

    def start_automation(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.automation_payloads.append(payload)
        return {"success": True, "message": "Automation started"}

    def get_status(self) -> Dict[str, Any]:
        return {"isRunning": self.running, "status": "running" if self.running else "idle"}


def make_client(tmp_path, token: Optional[str] = "secret"):
    controller = FakeController()
    app = create_app(controller=controller, settings=Settings(runner_token=token), settings_path=tmp_path / "settings.json")
    return TestClient(app), controller


def test_health_needs_no_token(tmp_path):
    client, _ = make_client(tmp_path)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_token_is_401(tmp_path):
    client, controller = make_client(tmp_path)
    response = client.post("/runner/start")
    assert response.status_code == 401
    assert controller.calls == []


def test_wrong_token_is_401(tmp_path):
    client, _ = make_client(tmp_path)
    response = client.get("/runner/status", headers={"x-runner-token": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid runner token"


def test_unconfigured_token_is_500(tmp_path):
    client, _ = make_client(tmp_path, token=None)
    response = client.get("/runner/status", headers=HEADERS)
    assert response.status_code == 500


def test_start_and_repeat_start(tmp_path):
    client, _ = make_client(tmp_path)

    first = client.post("/runner/start", headers=HEADERS)
    second = client.post("/runner/start", headers=HEADERS)

    assert first.status_code == 200
    assert first.json()["sessionId"] == "session-1"
    assert second.status_code == 400
    assert second.json()["error"] == "Runner already active"


def test_lifecycle_rejection_is_400_with_hint(tmp_path):
    client, _ = make_client(tmp_path)
    response = client.post("/runner/pause", headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["hint"] == "Start automation before pausing."


def test_stop_returns_stats_and_artifacts(tmp_path):
    client, _ = make_client(tmp_path)
    body = client.post("/runner/stop", headers=HEADERS).json()
    assert body["stats"]["itemsActedOn"] == 2
    assert body["artifacts"]["traceFile"].endswith("trace.zip")


def test_start_automation_forwards_payload(tmp_path):
    client, controller = make_client(tmp_path)
    payload = {
        "timing": {"tabDelay": [0, 0], "waitBetweenComments": {"min": 1, "max": 2}},
        "decisionEndpoint": "https://hooks.example.test/decide",
        "optimizeMode": True,
        "maxActions": 5,
    }

    response = client.post("/runner/start-automation", headers=HEADERS, json=payload)

    assert response.status_code == 200
    forwarded = controller.automation_payloads[0]
    assert forwarded["timing"]["tabDelay"] == [0, 0]
    assert forwarded["timing"]["waitBetweenComments"] == {"min": 1, "max": 2}
    assert forwarded["decisionEndpoint"] == "https://hooks.example.test/decide"
    assert forwarded["optimizeMode"] is True
    assert forwarded["maxActions"] == 5


def test_start_automation_rejects_bad_max_actions(tmp_path):
    client, controller = make_client(tmp_path)
    response = client.post("/runner/start-automation", headers=HEADERS, json={"maxActions": 0})
    assert response.status_code == 422
    assert controller.automation_payloads == []


def test_settings_round_trip(tmp_path):
    client, _ = make_client(tmp_path)

    assert client.get("/settings", headers=HEADERS).json()["success"] is False
    client.post("/settings", headers=HEADERS, json={"optimizeMode": True})
    stored = client.get("/settings", headers=HEADERS).json()

    assert stored == {"success": True, "settings": {"optimizeMode": True}}
