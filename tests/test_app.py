"""Tests for the HTTP API and the /ws endpoint."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from reshell.models import Recording, RecordingEvent, Summary
from reshell.server.app import create_app

from conftest import FakePty


class FakeSummaryLLM:
    def __init__(self):
        self.calls = []

    async def summarize(self, transcript, event_count, timeout=None):
        self.calls.append((transcript, event_count, timeout))
        return Summary(abstract="Fixed it.", detail="Long story.", event_count=event_count)


@pytest.fixture
def llm():
    return FakeSummaryLLM()


@pytest.fixture
def ptys():
    return []


@pytest.fixture
def client(config, store, llm, ptys):
    def factory(command, cwd):
        pty = FakePty(command, cwd)
        ptys.append(pty)
        return pty

    app = create_app(config, store, pty_factory=factory, llm=llm, background=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def recording(store):
    rec = Recording(
        session_id="session-1",
        session_name="Main",
        cwd="/tmp",
        events=[
            RecordingEvent(t=0, type="i", data="add a health check\r"),
            RecordingEvent(t=5, type="o", data="⏺ Added /api/health\r\n"),
        ],
    )
    store.save(rec)
    return rec


# ── Health ──────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["clients"] == 0
        assert data["sessions"] == 0


# ── File endpoint ───────────────────────────────────────────


class TestFileEndpoint:
    def test_serves_file(self, client, tmp_path):
        (tmp_path / "pic.svg").write_text("<svg/>")
        resp = client.get("/api/file", params={"path": str(tmp_path / "pic.svg")})
        assert resp.status_code == 200
        assert resp.text == "<svg/>"

    def test_outside_root(self, client):
        resp = client.get("/api/file", params={"path": "/etc/passwd"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Access denied"}

    def test_missing(self, client, tmp_path):
        resp = client.get("/api/file", params={"path": str(tmp_path / "nope.png")})
        assert resp.status_code == 404
        assert resp.json() == {"error": "File not found"}

    def test_directory_is_not_a_file(self, client, tmp_path):
        resp = client.get("/api/file", params={"path": str(tmp_path)})
        assert resp.status_code == 404

    def test_too_large(self, config, store, tmp_path):
        config.files.http_limit = 4
        (tmp_path / "big.bin").write_bytes(b"12345")
        app = create_app(config, store, pty_factory=FakePty, background=False)
        with TestClient(app) as client:
            resp = client.get("/api/file", params={"path": str(tmp_path / "big.bin")})
        assert resp.status_code == 413


# ── Recordings ──────────────────────────────────────────────


class TestRecordings:
    def test_list(self, client, recording):
        data = client.get("/api/recordings").json()
        assert [r["id"] for r in data] == [recording.id]
        assert data[0]["firstInput"] == "add a health check"
        assert data[0]["hasSummary"] is False
        assert data[0]["summaryStale"] is False

    def test_get(self, client, recording):
        data = client.get(f"/api/recordings/{recording.id}").json()
        assert data["sessionName"] == "Main"
        assert data["endedAt"] is None
        assert data["events"][0] == {"t": 0, "type": "i", "data": "add a health check\r"}

    def test_get_missing(self, client):
        resp = client.get("/api/recordings/rec-missing-0000")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Recording not found"}

    def test_delete(self, client, recording, store):
        resp = client.delete(f"/api/recordings/{recording.id}")
        assert resp.json() == {"status": "ok"}
        assert store.list() == []

    def test_transcript(self, client, recording):
        data = client.get(f"/api/recordings/{recording.id}/transcript").json()
        assert data["id"] == recording.id
        assert data["segments"][0] == {"type": "input", "text": "add a health check"}

    def test_summary_missing(self, client, recording):
        resp = client.get(f"/api/recordings/{recording.id}/summary")
        assert resp.status_code == 404
        assert resp.json() == {"error": "No summary found"}

    def test_generate_summary(self, client, recording, llm, store):
        resp = client.post(f"/api/recordings/{recording.id}/summary", json={})
        assert resp.status_code == 200
        assert resp.json()["abstract"] == "Fixed it."
        transcript, event_count, timeout = llm.calls[0]
        assert "[input] add a health check" in transcript
        assert event_count == 2
        assert timeout == 60.0
        assert store.load_summary(recording.id).detail == "Long story."
        assert client.get(f"/api/recordings/{recording.id}/summary").json()["eventCount"] == 2

    def test_generate_summary_with_client_transcript(self, client, recording, llm):
        client.post(f"/api/recordings/{recording.id}/summary", json={"transcript": "custom"})
        assert llm.calls[0][0] == "custom"


# ── WebSocket ───────────────────────────────────────────────


class TestWebSocket:
    def test_requires_client_id(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
        assert exc.value.code == 1008

    def test_first_connect(self, client):
        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            assert ws.receive_json() == {"type": "session-created", "id": "session-1", "name": "Main"}
            assert ws.receive_json() == {"type": "session-switched", "id": "session-1"}

    def test_input_reaches_pty(self, client, ptys):
        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "input", "sessionId": "session-1", "data": "ls\r"})
            ws.send_json({"type": "create-session"})
            assert ws.receive_json()["type"] == "session-created"
        assert ptys[0].written == ["ls\r"]

    def test_invalid_message_keeps_connection(self, client):
        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "error": "Invalid message"}
            ws.send_json({"type": "rename-session", "sessionId": "session-1", "name": "X"})
            assert ws.receive_json()["type"] == "session-renamed"

    def test_reconnect_restores_sessions(self, client, ptys):
        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_json({"type": "create-session", "name": "Logs"})
            ws.receive_json()
            ws.receive_json()
        ptys[1].emit("tail -f\r\n")

        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            messages = [ws.receive_json() for _ in range(5)]
        assert messages == [
            {"type": "session-created", "id": "session-1", "name": "Main"},
            {"type": "session-created", "id": "session-2", "name": "Logs"},
            {"type": "session-switched", "id": "session-2"},
            {"type": "clear", "sessionId": "session-2"},
            {"type": "output", "sessionId": "session-2", "data": "tail -f\r\n"},
        ]
        assert len(ptys) == 2

    def test_health_counts_sessions(self, client):
        with client.websocket_connect("/ws?clientId=tab-1") as ws:
            ws.receive_json()
            ws.receive_json()
            data = client.get("/api/health").json()
        assert data["clients"] == 1
        assert data["sessions"] == 1
