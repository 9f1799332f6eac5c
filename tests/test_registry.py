"""Tests for the client registry: sessions that outlive their sockets."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from reshell.errors import NotFound

from conftest import FakeChannel


def connect(registry, client_id="c1"):
    channel = FakeChannel()
    registry.connect(client_id, channel)
    return channel


def session_state(registry, client_id="c1"):
    record = registry.get(client_id)
    return list(record.sessions), record.active_session_id


# ── Connect / reconnect ─────────────────────────────────────


class TestConnect:
    def test_first_connect_creates_main(self, registry):
        channel = connect(registry)
        assert channel.messages == [
            {"type": "session-created", "id": "session-1", "name": "Main"},
            {"type": "session-switched", "id": "session-1"},
        ]
        assert registry.get("c1").active_session_id == "session-1"

    def test_reconnect_restores_sessions(self, registry, ptys):
        connect(registry)
        registry.create_session("c1", "Build")
        registry.switch_session("c1", "session-1")
        ptys[0].emit("$ ls\r\n")
        ptys[0].emit("a.txt\r\n")

        old = registry.get("c1").channel
        registry.disconnect("c1", old)
        channel = connect(registry)

        assert channel.messages == [
            {"type": "session-created", "id": "session-1", "name": "Main"},
            {"type": "session-created", "id": "session-2", "name": "Build"},
            {"type": "session-switched", "id": "session-1"},
            {"type": "clear", "sessionId": "session-1"},
            {"type": "output", "sessionId": "session-1", "data": "$ ls\r\n"},
            {"type": "output", "sessionId": "session-1", "data": "a.txt\r\n"},
        ]

    def test_reconnect_transparency(self, registry, ptys):
        connect(registry)
        registry.create_session("c1")
        before = session_state(registry)

        registry.disconnect("c1", registry.get("c1").channel)
        # Output produced while nobody is listening
        ptys[1].emit("while away 1")
        ptys[1].emit("while away 2")
        channel = connect(registry)

        assert session_state(registry) == before
        replay = [m["data"] for m in channel.of_type("output")]
        assert replay == ["while away 1", "while away 2"]

    def test_stale_channel_disconnect_is_ignored(self, registry):
        first = connect(registry)
        second = connect(registry)
        registry.disconnect("c1", first)
        assert registry.get("c1").channel is second

    def test_disconnect_keeps_sessions(self, registry, ptys):
        channel = connect(registry)
        registry.disconnect("c1", channel)
        assert registry.get("c1").sessions
        assert not ptys[0].killed

    def test_disconnect_drops_watches(self, registry, tmp_path):
        async def scenario():
            channel = connect(registry)
            registry.watches.watch("c1", str(tmp_path / "a.txt"))
            registry.disconnect("c1", channel)
            return registry.watches.watched("c1")

        assert asyncio.run(scenario()) == []

    def test_output_while_disconnected_sends_nothing(self, registry, ptys):
        channel = connect(registry)
        registry.disconnect("c1", channel)
        channel.clear()
        ptys[0].emit("nobody hears this")
        assert channel.messages == []
        assert registry.get("c1").sessions["session-1"].history.chunks() == ["nobody hears this"]


# ── Session operations ──────────────────────────────────────


class TestSessions:
    def test_create_session(self, registry, ptys, tmp_path):
        channel = connect(registry)
        channel.clear()
        session = registry.create_session("c1", cwd=str(tmp_path))
        assert session.id == "session-2"
        assert session.name == "Shell 2"
        assert ptys[1].cwd == str(tmp_path)
        assert ptys[1].command == ["/bin/sh"]
        assert channel.types() == ["session-created", "session-switched"]

    def test_missing_cwd_falls_back_to_home(self, registry, ptys, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        connect(registry)
        registry.create_session("c1", cwd="/definitely/not/here")
        assert ptys[1].cwd == str(tmp_path)

    def test_live_output_forwarded(self, registry, ptys):
        channel = connect(registry)
        channel.clear()
        ptys[0].emit("hi")
        assert channel.messages == [{"type": "output", "sessionId": "session-1", "data": "hi"}]

    def test_switch_replays_history(self, registry, ptys):
        channel = connect(registry)
        registry.create_session("c1")
        ptys[0].emit("first")
        channel.clear()
        assert registry.switch_session("c1", "session-1")
        assert channel.types() == ["session-switched", "clear", "output"]
        assert registry.get("c1").active_session_id == "session-1"

    def test_switch_unknown_is_noop(self, registry):
        channel = connect(registry)
        channel.clear()
        assert not registry.switch_session("c1", "session-99")
        assert channel.messages == []
        assert registry.get("c1").active_session_id == "session-1"

    def test_close_last_session_creates_main(self, registry, ptys):
        channel = connect(registry)
        channel.clear()
        registry.close_session("c1", "session-1")
        assert ptys[0].killed
        assert channel.messages == [
            {"type": "session-closed", "id": "session-1"},
            {"type": "session-created", "id": "session-2", "name": "Main"},
            {"type": "session-switched", "id": "session-2"},
        ]
        assert list(registry.get("c1").sessions) == ["session-2"]

    def test_close_active_switches_to_first(self, registry, ptys):
        channel = connect(registry)
        registry.create_session("c1")
        registry.create_session("c1")
        ptys[0].emit("main output")
        channel.clear()
        registry.close_session("c1", "session-3")
        assert registry.get("c1").active_session_id == "session-1"
        assert channel.types() == ["session-closed", "session-switched", "clear", "output"]

    def test_close_inactive_keeps_active(self, registry):
        channel = connect(registry)
        registry.create_session("c1")
        channel.clear()
        registry.close_session("c1", "session-1")
        assert registry.get("c1").active_session_id == "session-2"
        assert channel.types() == ["session-closed"]

    def test_never_zero_sessions(self, registry):
        connect(registry)
        for _ in range(5):
            record = registry.get("c1")
            registry.close_session("c1", next(iter(record.sessions)))
            assert len(registry.get("c1").sessions) >= 1

    def test_rename(self, registry):
        channel = connect(registry)
        channel.clear()
        assert registry.rename_session("c1", "session-1", "Logs")
        assert channel.messages == [{"type": "session-renamed", "id": "session-1", "name": "Logs"}]

    def test_input_and_resize(self, registry, ptys):
        connect(registry)
        assert registry.write_input("c1", "session-1", "ls\r")
        assert registry.resize("c1", "session-1", 120, 40)
        assert ptys[0].written == ["ls\r"]
        assert (ptys[0].cols, ptys[0].rows) == (120, 40)
        assert len(registry.get("c1").sessions["session-1"].history) == 0

    def test_input_to_unknown_session(self, registry):
        connect(registry)
        assert not registry.write_input("c1", "session-9", "x")
        assert not registry.write_input("ghost", "session-1", "x")

    def test_clients_are_independent(self, registry, ptys):
        a = connect(registry, "a")
        b = connect(registry, "b")
        a.clear()
        b.clear()
        ptys[1].emit("for b only")
        assert a.messages == []
        assert b.of_type("output")[0]["data"] == "for b only"


# ── Reaper ──────────────────────────────────────────────────


class TestReap:
    def test_connected_client_never_reaped(self, registry, clock):
        connect(registry)
        assert registry.reap(clock.now + 10 * 3600) == []
        assert registry.get("c1") is not None

    def test_within_retention_kept(self, registry, clock):
        channel = connect(registry)
        registry.disconnect("c1", channel)
        assert registry.reap(clock.now + 3600) == []

    def test_expired_client_reaped(self, registry, clock, ptys, store):
        channel = connect(registry)
        session = registry.get("c1").sessions["session-1"]
        recorder = session.start_recording("/tmp")
        session.write("explain\r")
        registry.disconnect("c1", channel)

        assert registry.reap(clock.now + 3601) == ["c1"]
        assert registry.get("c1") is None
        assert ptys[0].killed
        assert store.load(recorder.id).ended_at is not None


# ── Recordings ──────────────────────────────────────────────


class TestAssistantMonitor:
    def _patch_probe(self, running):
        return patch(
            "reshell.terminal.process.has_child_matching",
            new=AsyncMock(return_value=running),
        )

    def test_start_and_stop(self, registry, store):
        channel = connect(registry)
        session = registry.get("c1").sessions["session-1"]

        async def scenario():
            with self._patch_probe(True), patch(
                "reshell.terminal.process.get_cwd", new=AsyncMock(return_value="/work")
            ):
                await registry.poll_assistants()
            assert session.assistant_running
            recording_id = session.recorder.id
            assert store.load(recording_id).cwd == "/work"

            session.write("hello claude\r")
            with self._patch_probe(False):
                await registry.poll_assistants()
            return recording_id

        recording_id = asyncio.run(scenario())
        assert not session.assistant_running
        assert channel.of_type("recording-started") == [
            {"type": "recording-started", "sessionId": "session-1", "recordingId": recording_id},
        ]
        assert channel.of_type("recording-stopped")[0]["recordingId"] == recording_id
        assert store.load(recording_id).ended_at is not None

    def test_recording_without_input_discarded(self, registry, store):
        connect(registry)
        session = registry.get("c1").sessions["session-1"]

        async def scenario():
            with self._patch_probe(True), patch(
                "reshell.terminal.process.get_cwd", new=AsyncMock(return_value="/work")
            ):
                await registry.poll_assistants()
            recording_id = session.recorder.id
            with self._patch_probe(False):
                await registry.poll_assistants()
            return recording_id

        recording_id = asyncio.run(scenario())
        assert store.list() == []
        with pytest.raises(NotFound):
            store.load(recording_id)

    def test_disconnected_clients_not_polled(self, registry):
        channel = connect(registry)
        registry.disconnect("c1", channel)
        probe = AsyncMock(return_value=True)

        async def scenario():
            with patch("reshell.terminal.process.has_child_matching", new=probe):
                await registry.poll_assistants()

        asyncio.run(scenario())
        probe.assert_not_called()

    def test_close_session_finalizes_recording(self, registry, store):
        connect(registry)
        session = registry.get("c1").sessions["session-1"]
        recorder = session.start_recording("/tmp")
        session.write("do it\r")
        registry.close_session("c1", "session-1")
        assert store.load(recorder.id).ended_at is not None

    def test_flush_recordings(self, registry, store):
        connect(registry)
        session = registry.get("c1").sessions["session-1"]
        recorder = session.start_recording("/tmp")
        session.write("partial")
        assert registry.flush_recordings() == 1
        assert store.load(recorder.id).ended_at is None

    def test_shutdown_leaves_recordings_interrupted(self, registry, store, ptys):
        connect(registry)
        session = registry.get("c1").sessions["session-1"]
        recorder = session.start_recording("/tmp")
        session.write("in flight\r")
        asyncio.run(registry.shutdown())
        assert ptys[0].killed
        assert store.load(recorder.id).ended_at is None
