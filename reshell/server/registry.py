"""Client Registry — per-browser session sets that outlive their sockets."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from reshell.config import ReshellConfig
from reshell.server.files import FileAccess
from reshell.server.watch import WatchManager
from reshell.server.ws_manager import ClientChannel
from reshell.terminal import process
from reshell.terminal.pty_handle import PtyHandle
from reshell.terminal.recorder import RecordingStore
from reshell.terminal.session import History, Session

log = logging.getLogger(__name__)

PtyFactory = Callable[[list[str], str], PtyHandle]


def spawn_pty(command: list[str], cwd: str) -> PtyHandle:
    handle = PtyHandle(command, cwd)
    handle.spawn()
    return handle


@dataclass
class ClientRecord:
    """Everything a browser identity owns. Survives socket disconnects."""

    client_id: str
    sessions: dict[str, Session] = field(default_factory=dict)
    active_session_id: Optional[str] = None
    last_seen: float = 0.0
    channel: Optional[ClientChannel] = None
    session_counter: int = 0

    @property
    def connected(self) -> bool:
        return self.channel is not None

    @property
    def active_session(self) -> Optional[Session]:
        if self.active_session_id is None:
            return None
        return self.sessions.get(self.active_session_id)

    def send(self, msg_type: str, **data: Any) -> None:
        """Send to the attached socket; silently skipped while disconnected."""
        if self.channel is not None:
            self.channel.send(msg_type, **data)


class Registry:
    """
    Owns every ClientRecord and is the only code that changes a client's
    active session or live channel.

    Handlers look the record up on every call instead of caching the
    channel, so a reconnect redirects all in-flight work to the new socket.
    """

    def __init__(
        self,
        config: ReshellConfig,
        store: RecordingStore,
        pty_factory: PtyFactory = spawn_pty,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.store = store
        self.pty_factory = pty_factory
        self.clock = clock
        self.clients: dict[str, ClientRecord] = {}
        self.files = FileAccess(config.files.root, config.files.read_limit)
        self.watches = WatchManager(self.files, self.notify, config.files.debounce_ms)
        self._tasks: list[asyncio.Task] = []

    # ── lookup ──────────────────────────────────────────────

    def get(self, client_id: str) -> Optional[ClientRecord]:
        return self.clients.get(client_id)

    def session(self, client_id: str, session_id: Optional[str]) -> Optional[Session]:
        record = self.clients.get(client_id)
        if record is None or session_id is None:
            return None
        return record.sessions.get(session_id)

    def notify(self, client_id: str, msg_type: str, data: dict[str, Any]) -> None:
        record = self.clients.get(client_id)
        if record is not None:
            record.send(msg_type, **data)

    @property
    def session_count(self) -> int:
        return sum(len(r.sessions) for r in self.clients.values())

    # ── connection lifecycle ────────────────────────────────

    def connect(self, client_id: str, channel: ClientChannel) -> ClientRecord:
        """Attach a socket, restoring the client's sessions if it has any."""
        record = self.clients.get(client_id)
        if record is None:
            record = ClientRecord(client_id=client_id)
            self.clients[client_id] = record
        record.last_seen = self.clock()
        record.channel = channel

        if not record.sessions:
            self.create_session(client_id, "Main")
            return record

        log.info("Restoring %d sessions for client: %s", len(record.sessions), client_id)
        for session in record.sessions.values():
            record.send("session-created", id=session.id, name=session.name)
        active_id = record.active_session_id
        if active_id not in record.sessions:
            active_id = next(iter(record.sessions))
        self._show(record, active_id)
        return record

    def disconnect(self, client_id: str, channel: ClientChannel) -> None:
        """Detach ``channel`` if it is still the live one. Sessions keep running."""
        record = self.clients.get(client_id)
        if record is None:
            return
        record.last_seen = self.clock()
        if record.channel is channel:
            record.channel = None
            self.watches.unwatch_client(client_id)
            log.info("Client disconnected: %s", client_id)

    # ── session operations ──────────────────────────────────

    def _shell_cwd(self, cwd: Optional[str]) -> str:
        if cwd and os.path.isdir(cwd):
            return cwd
        return os.environ.get("HOME") or "/tmp"

    def create_session(
        self,
        client_id: str,
        name: Optional[str] = None,
        cwd: Optional[str] = None,
        switch: bool = True,
    ) -> Session:
        record = self.clients[client_id]
        record.session_counter += 1
        session_id = f"session-{record.session_counter}"
        shell_cwd = self._shell_cwd(cwd)

        cfg = self.config.sessions
        pty = self.pty_factory([cfg.shell], shell_cwd)
        session = Session(
            session_id,
            name or f"Shell {record.session_counter}",
            shell_cwd,
            pty,
            History(cfg.history_cap, cfg.history_keep),
        )
        session.on_output = lambda s, data: self._forward_output(client_id, s, data)
        session.on_exit = lambda s, code: self._session_exited(client_id, s)
        record.sessions[session_id] = session

        record.send("session-created", id=session.id, name=session.name)
        if switch:
            record.active_session_id = session_id
            record.send("session-switched", id=session_id)
        return session

    def _show(self, record: ClientRecord, session_id: str) -> None:
        """Select a session and redraw it: switched, clear, then its history.

        Everything is queued without yielding, so no live output can land
        between the clear and the replay.
        """
        record.active_session_id = session_id
        record.send("session-switched", id=session_id)
        record.send("clear", sessionId=session_id)
        for chunk in record.sessions[session_id].history:
            record.send("output", sessionId=session_id, data=chunk)

    def switch_session(self, client_id: str, session_id: str) -> bool:
        record = self.clients.get(client_id)
        if record is None or session_id not in record.sessions:
            return False
        self._show(record, session_id)
        return True

    def close_session(self, client_id: str, session_id: str) -> bool:
        record = self.clients.get(client_id)
        if record is None or session_id not in record.sessions:
            return False

        session = record.sessions.pop(session_id)
        self._stop_recording(record, session)
        session.close()
        record.send("session-closed", id=session_id)

        if not record.sessions:
            replacement = self.create_session(client_id, "Main")
            log.info("Last session closed for %s; created %s", client_id, replacement.id)
        elif record.active_session_id == session_id:
            self._show(record, next(iter(record.sessions)))
        return True

    def rename_session(self, client_id: str, session_id: str, name: str) -> bool:
        session = self.session(client_id, session_id)
        if session is None:
            return False
        session.name = name
        self.notify(client_id, "session-renamed", {"id": session_id, "name": name})
        return True

    def write_input(self, client_id: str, session_id: str, data: str) -> bool:
        session = self.session(client_id, session_id)
        return session is not None and session.write(data)

    def resize(self, client_id: str, session_id: str, cols: int, rows: int) -> bool:
        session = self.session(client_id, session_id)
        return session is not None and session.resize(cols, rows)

    # ── PTY callbacks ───────────────────────────────────────

    def _forward_output(self, client_id: str, session: Session, data: str) -> None:
        record = self.clients.get(client_id)
        if record is not None and session.id in record.sessions:
            record.send("output", sessionId=session.id, data=data)

    def _session_exited(self, client_id: str, session: Session) -> None:
        record = self.clients.get(client_id)
        if record is not None and session.recorder is not None:
            self._stop_recording(record, session)

    # ── recordings ──────────────────────────────────────────

    async def _start_recording(self, record: ClientRecord, session: Session) -> None:
        cwd = await process.get_cwd(
            session.pid, os.environ.get("HOME") or "/tmp", self.config.sessions.cwd_timeout
        )
        if not session.is_open or session.recorder is not None:
            return
        recorder = session.start_recording(cwd)
        self.store.save(recorder.recording)
        record.send("recording-started", sessionId=session.id, recordingId=recorder.id)
        log.info("Recording started: %s for session %s", recorder.id, session.id)

    def _stop_recording(self, record: ClientRecord, session: Session) -> None:
        recorder = session.stop_recording()
        if recorder is None:
            return
        self.store.finish(recorder)
        record.send("recording-stopped", sessionId=session.id, recordingId=recorder.id)

    async def poll_assistants(self) -> None:
        """One pass of assistant detection over every connected client."""
        cfg = self.config.recording
        for record in list(self.clients.values()):
            if not record.connected:
                continue
            for session in list(record.sessions.values()):
                if not session.is_open:
                    continue
                running = await process.has_child_matching(
                    [session.pid], cfg.assistant_command, cfg.probe_timeout
                )
                if running and not session.assistant_running:
                    await self._start_recording(record, session)
                elif not running and session.assistant_running:
                    self._stop_recording(record, session)

    async def any_assistant_running(self, client_id: str) -> bool:
        record = self.clients.get(client_id)
        if record is None:
            return False
        cfg = self.config.recording
        pids = [s.pid for s in record.sessions.values() if s.is_open]
        return await process.has_child_matching(pids, cfg.assistant_command, cfg.probe_timeout)

    def flush_recordings(self) -> int:
        flushed = 0
        for record in self.clients.values():
            for session in record.sessions.values():
                if session.recorder is not None:
                    self.store.save(session.recorder.recording)
                    flushed += 1
        return flushed

    # ── reaping and shutdown ────────────────────────────────

    def reap(self, now: Optional[float] = None) -> list[str]:
        """Discard clients disconnected for longer than the retention window."""
        now = self.clock() if now is None else now
        retention = self.config.sessions.retention_seconds
        reaped = []
        for client_id, record in list(self.clients.items()):
            if record.connected or now - record.last_seen <= retention:
                continue
            for session in record.sessions.values():
                self._stop_recording(record, session)
                session.close()
            self.watches.unwatch_client(client_id)
            del self.clients[client_id]
            reaped.append(client_id)
            log.info("Cleaned up stale client: %s", client_id)
        return reaped

    async def _every(self, interval: float, fn: Callable[[], Any], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = fn()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("%s failed", name)

    def start_background_tasks(self) -> None:
        self._tasks.append(asyncio.create_task(
            self._every(self.config.sessions.reap_interval, self.reap, "reaper")
        ))
        if self.config.recording.enabled:
            self._tasks.append(asyncio.create_task(
                self._every(self.config.recording.poll_seconds, self.poll_assistants, "assistant monitor")
            ))
            self._tasks.append(asyncio.create_task(
                self._every(self.config.recording.flush_seconds, self.flush_recordings, "recording flush")
            ))

    async def shutdown(self) -> None:
        """Stop background work and kill every PTY.

        Active recordings are flushed but not finalized, so they stay
        marked as interrupted.
        """
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.flush_recordings()
        self.watches.close()
        for record in self.clients.values():
            for session in record.sessions.values():
                session.recorder = None
                session.close()
        log.info("Shut down %d clients", len(self.clients))
