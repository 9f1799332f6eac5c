"""Replay Injector — types a past session's context into a fresh assistant."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from reshell.config import ReplayConfig
from reshell.errors import NotFound
from reshell.models import Recording, Summary
from reshell.transcript import build_clean_transcript, format_transcript_for_prompt
from reshell.transcript.ansi import visible_lines

log = logging.getLogger(__name__)

TRUNCATION_MARKER = "... (truncated)\n"

# Dialogs the assistant shows before its input prompt; Enter accepts them
INTERMEDIATE_KEYWORDS = (
    "trust this folder",
    "enter to confirm",
    "do you want to allow",
)

PROMPT_LINES = 4
SCREEN_LINES = 12


class ReplayAborted(Exception):
    """The target session went away mid-replay."""


class ScreenState(str, Enum):
    PROMPT = "prompt"
    INTERMEDIATE = "intermediate"
    WAITING = "waiting"


def detect_screen_state(lines: list[str]) -> ScreenState:
    """Classify the visible screen, most recent line first."""
    for line in lines[:PROMPT_LINES]:
        if "❯" in line or line.rstrip().endswith(">"):
            return ScreenState.PROMPT
    blob = "\n".join(lines).lower()
    if any(keyword in blob for keyword in INTERMEDIATE_KEYWORDS):
        return ScreenState.INTERMEDIATE
    return ScreenState.WAITING


def truncate_context(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters, starting at a line boundary."""
    if len(text) <= limit:
        return text
    tail = text[-limit:]
    newline = tail.find("\n")
    if newline != -1:
        tail = tail[newline + 1:]
    return TRUNCATION_MARKER + tail


def build_context(
    recording: Recording,
    mode: str,
    summary: Optional[Summary] = None,
    limit: int = 50_000,
) -> str:
    """Text to type into the resumed session for ``mode`` transcript|summary."""
    if mode == "summary":
        if summary is None:
            raise NotFound("No summary found")
        return summary.as_context()
    segments = build_clean_transcript(recording.events)
    return truncate_context(format_transcript_for_prompt(segments), limit)


class ReplayInjector:
    """
    Drives context into a new session, one replay per client.

    Starting a replay cancels the client's previous one; a cancelled replay
    sends nothing further.
    """

    def __init__(
        self,
        registry,
        config: Optional[ReplayConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.config = config or ReplayConfig()
        self._sleep = sleep
        self._clock = clock
        self._tasks: dict[str, asyncio.Task] = {}

    def bring_back(
        self,
        client_id: str,
        recording: Recording,
        mode: str = "transcript",
        summary: Optional[Summary] = None,
    ) -> asyncio.Task:
        """Open ``Resume: <name>`` at the recording's cwd and start typing."""
        context = build_context(recording, mode, summary, self.config.context_limit)
        self.cancel(client_id)

        session = self.registry.create_session(
            client_id, f"Resume: {recording.session_name}", recording.cwd
        )
        task = asyncio.create_task(self._drive(client_id, session.id, context))
        self._tasks[client_id] = task
        task.add_done_callback(lambda t: self._forget(client_id, t))
        log.info("Bringing back %s (%s) into %s", recording.id, mode, session.id)
        return task

    def cancel(self, client_id: str) -> bool:
        task = self._tasks.pop(client_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for client_id in list(self._tasks):
            self.cancel(client_id)

    def _forget(self, client_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(client_id) is task:
            del self._tasks[client_id]

    def _send(self, client_id: str, session_id: str, data: str) -> None:
        if not self.registry.write_input(client_id, session_id, data):
            raise ReplayAborted(session_id)

    def screen_state(self, client_id: str, session_id: str) -> ScreenState:
        session = self.registry.session(client_id, session_id)
        if session is None:
            return ScreenState.WAITING
        return detect_screen_state(visible_lines(session.history.chunks(), SCREEN_LINES))

    async def _drive(self, client_id: str, session_id: str, context: str) -> None:
        cfg = self.config
        try:
            await self._sleep(cfg.settle_delay)
            self._send(client_id, session_id, cfg.launch_command + "\r")
            await self.wait_for_prompt(client_id, session_id)
            await self.send_chunked(client_id, session_id, context)
        except asyncio.CancelledError:
            log.info("Bring-back into %s cancelled", session_id)
            raise
        except ReplayAborted:
            log.info("Session %s closed during bring-back", session_id)

    async def wait_for_prompt(self, client_id: str, session_id: str) -> ScreenState:
        """Poll until the prompt shows, confirming dialogs; give up at the deadline."""
        cfg = self.config
        deadline = self._clock() + cfg.safety_timeout
        while self._clock() < deadline:
            state = self.screen_state(client_id, session_id)
            if state is ScreenState.PROMPT:
                return state
            if state is ScreenState.INTERMEDIATE:
                self._send(client_id, session_id, "\r")
                await self._sleep(cfg.confirm_delay)
                continue
            await self._sleep(cfg.poll_interval)
        log.info("No prompt in %s after %.0fs, sending anyway", session_id, cfg.safety_timeout)
        return ScreenState.WAITING

    async def send_chunked(self, client_id: str, session_id: str, text: str) -> None:
        size = self.config.chunk_size
        delay = self.config.chunk_delay
        for start in range(0, len(text), size):
            self._send(client_id, session_id, text[start:start + size])
            if start + size < len(text):
                await self._sleep(delay)
        await self._sleep(delay)
        self._send(client_id, session_id, "\r")
