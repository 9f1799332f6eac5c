"""Protocol Router — decodes inbound WebSocket messages and dispatches them."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Optional

from reshell.diff import compute_word_diff
from reshell.errors import LLMTimeout, ReshellError, from_os_error
from reshell.llm import CommandLLM
from reshell.replay.injector import ReplayInjector
from reshell.server.registry import Registry
from reshell.terminal import process
from reshell.terminal.recorder import RecordingStore

log = logging.getLogger(__name__)

Message = dict[str, Any]
Handler = Callable[[str, Message], Optional[Awaitable[None]]]


class ProtocolRouter:
    """
    One dispatch table for every inbound message type.

    Handlers never hold on to a socket: replies go through the registry,
    which always knows the client's current channel. Slow handlers (process
    probes, LLM calls) run as tasks so the receive loop keeps flowing.
    """

    def __init__(
        self,
        registry: Registry,
        store: RecordingStore,
        llm: CommandLLM,
        injector: Optional[ReplayInjector] = None,
    ):
        self.registry = registry
        self.store = store
        self.llm = llm
        self.injector = injector or ReplayInjector(registry, registry.config.replay)
        self._tasks: set[asyncio.Task] = set()
        self.handlers: dict[str, Handler] = {
            "create-session": self.create_session,
            "switch-session": self.switch_session,
            "close-session": self.close_session,
            "rename-session": self.rename_session,
            "input": self.input,
            "resize": self.resize,
            "check-claude-running": self.check_claude_running,
            "correct-english": self.correct_english,
            "get-cwd": self.get_cwd,
            "list-directory": self.list_directory,
            "read-file": self.read_file,
            "watch-file": self.watch_file,
            "unwatch-file": self.unwatch_file,
            "bring-back": self.bring_back,
            "cancel-bring-back": self.cancel_bring_back,
        }

    def send(self, client_id: str, msg_type: str, **data: Any) -> None:
        self.registry.notify(client_id, msg_type, data)

    def spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def close(self) -> None:
        self.injector.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def handle(self, client_id: str, raw: str) -> None:
        """Decode and dispatch one message. Never raises."""
        try:
            msg = json.loads(raw)
        except ValueError:
            log.warning("Invalid JSON from %s", client_id)
            self.send(client_id, "error", error="Invalid message")
            return
        if not isinstance(msg, dict):
            self.send(client_id, "error", error="Invalid message")
            return

        msg_type = msg.get("type")
        handler = self.handlers.get(msg_type)
        if handler is None:
            log.debug("Ignoring unknown message type %r from %s", msg_type, client_id)
            return

        try:
            result = handler(client_id, msg)
            if result is not None:
                await result
        except ReshellError as e:
            self.send(client_id, "error", error=e.message)
        except OSError as e:
            self.send(client_id, "error", error=from_os_error(e).message)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Malformed %s message from %s: %s", msg_type, client_id, e)
            self.send(client_id, "error", error=f"Malformed {msg_type} message")
        except Exception as e:
            log.exception("Error handling %s from %s", msg_type, client_id)
            self.send(client_id, "error", error=str(e) or "Internal error")

    # ── sessions ────────────────────────────────────────────

    def create_session(self, client_id: str, msg: Message) -> None:
        self.registry.create_session(client_id, msg.get("name"), msg.get("cwd"))

    def switch_session(self, client_id: str, msg: Message) -> None:
        self.registry.switch_session(client_id, msg["sessionId"])

    def close_session(self, client_id: str, msg: Message) -> None:
        self.registry.close_session(client_id, msg["sessionId"])

    def rename_session(self, client_id: str, msg: Message) -> None:
        self.registry.rename_session(client_id, msg["sessionId"], str(msg["name"]))

    def input(self, client_id: str, msg: Message) -> None:
        data = msg["data"]
        if not isinstance(data, str):
            raise TypeError(f"input data must be a string, not {type(data).__name__}")
        self.registry.write_input(client_id, msg["sessionId"], data)

    def resize(self, client_id: str, msg: Message) -> None:
        self.registry.resize(client_id, msg["sessionId"], int(msg["cols"]), int(msg["rows"]))

    # ── process probes ──────────────────────────────────────

    def check_claude_running(self, client_id: str, msg: Message) -> None:
        async def probe() -> None:
            running = await self.registry.any_assistant_running(client_id)
            self.send(client_id, "claude-running-status", running=running)

        self.spawn(probe())

    def get_cwd(self, client_id: str, msg: Message) -> None:
        session = self.registry.session(client_id, msg.get("sessionId"))
        if session is None:
            return
        home = self.registry.files.root

        async def probe() -> None:
            cwd = await process.get_cwd(
                session.pid, home, self.registry.config.sessions.cwd_timeout
            )
            self.send(client_id, "cwd-result", cwd=cwd, home=home)

        self.spawn(probe())

    # ── English correction ──────────────────────────────────

    def correct_english(self, client_id: str, msg: Message) -> None:
        text = str(msg.get("text", ""))
        session_id = msg.get("sessionId")
        mode = msg.get("mode") or "grammar"

        async def correct() -> None:
            try:
                corrected = await self.llm.correct_english(text, mode)
            except LLMTimeout:
                self.send(client_id, "correction-error",
                          sessionId=session_id, original=text, error="Correction timed out")
                return
            except ReshellError as e:
                self.send(client_id, "correction-error",
                          sessionId=session_id, original=text, error=e.message or "Correction failed")
                return
            self.send(client_id, "correction-result",
                      sessionId=session_id, original=text, corrected=corrected,
                      diff=[p.model_dump() for p in compute_word_diff(text, corrected)])

        self.spawn(correct())

    # ── files ───────────────────────────────────────────────

    def list_directory(self, client_id: str, msg: Message) -> None:
        files = self.registry.files
        path = msg.get("path") or files.root
        try:
            resolved, entries = files.list_directory(path, bool(msg.get("showHidden")))
        except ReshellError as e:
            self.send(client_id, "directory-listing", path=os.path.abspath(path), error=e.message)
            return
        self.send(client_id, "directory-listing", path=resolved, entries=entries)

    def read_file(self, client_id: str, msg: Message) -> None:
        path = msg.get("path")
        if not path:
            return
        try:
            resolved, content = self.registry.files.read_text(path)
        except ReshellError as e:
            self.send(client_id, "file-content", path=os.path.abspath(path), error=e.message)
            return
        self.send(client_id, "file-content",
                  path=resolved, content=content, name=os.path.basename(resolved))

    def watch_file(self, client_id: str, msg: Message) -> None:
        if msg.get("path"):
            self.registry.watches.watch(client_id, msg["path"])

    def unwatch_file(self, client_id: str, msg: Message) -> None:
        if msg.get("path"):
            self.registry.watches.unwatch(client_id, msg["path"])

    # ── bring back ──────────────────────────────────────────

    def bring_back(self, client_id: str, msg: Message) -> None:
        recording_id = msg.get("recordingId")
        mode = msg.get("mode") or "transcript"
        try:
            recording = self.store.load(str(recording_id))
            summary = self.store.load_summary(recording.id) if mode == "summary" else None
            self.injector.bring_back(client_id, recording, mode, summary)
        except ReshellError as e:
            self.send(client_id, "bring-back-error", recordingId=recording_id, error=e.message)

    def cancel_bring_back(self, client_id: str, msg: Message) -> None:
        self.injector.cancel(client_id)
