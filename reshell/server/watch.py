"""Debounced file change notifications per (client, path)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from watchfiles import awatch

from reshell.errors import AccessDenied, ReshellError
from reshell.server.files import FileAccess

log = logging.getLogger(__name__)

Notify = Callable[[str, str, dict[str, Any]], None]
WatcherFactory = Callable[[str, asyncio.Event], AsyncIterator[Any]]


def _default_watcher(path: str, stop: asyncio.Event) -> AsyncIterator[Any]:
    return awatch(path, stop_event=stop, debounce=50, step=25, recursive=False)


class WatchState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"


@dataclass
class WatchedFile:
    """One (client, path) watch and its debounce state."""

    client_id: str
    path: str
    stop: asyncio.Event
    state: WatchState = WatchState.IDLE
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional[asyncio.Task] = None


class WatchManager:
    """
    Owns every OS-level file watch.

    Each watch moves ``IDLE → PENDING`` on a change event (arming a debounce
    timer; further events re-arm it) and back to ``IDLE`` when the timer
    fires and the file is re-read. A failed re-read or watcher error
    unregisters the watch.
    """

    def __init__(
        self,
        files: FileAccess,
        notify: Notify,
        debounce_ms: int = 100,
        watcher_factory: WatcherFactory = _default_watcher,
    ):
        self.files = files
        self.notify = notify
        self.debounce = debounce_ms / 1000
        self._watcher_factory = watcher_factory
        self._watches: dict[str, dict[str, WatchedFile]] = {}

    def watched(self, client_id: str) -> list[str]:
        return sorted(self._watches.get(client_id, {}))

    def watch(self, client_id: str, path: str) -> bool:
        """Start watching. Idempotent; paths outside the root are ignored."""
        try:
            resolved = self.files.resolve(path)
        except AccessDenied:
            return False

        watches = self._watches.setdefault(client_id, {})
        if resolved in watches:
            return True

        entry = WatchedFile(client_id=client_id, path=resolved, stop=asyncio.Event())
        watches[resolved] = entry
        entry.task = asyncio.create_task(self._run(entry))
        return True

    def unwatch(self, client_id: str, path: str) -> None:
        """Stop watching. Unknown paths are a no-op."""
        try:
            resolved = self.files.resolve(path)
        except AccessDenied:
            return
        watches = self._watches.get(client_id)
        if not watches:
            return
        entry = watches.pop(resolved, None)
        if entry is not None:
            self._cancel(entry)
        if not watches:
            del self._watches[client_id]

    def unwatch_client(self, client_id: str) -> None:
        for entry in self._watches.pop(client_id, {}).values():
            self._cancel(entry)

    def close(self) -> None:
        for client_id in list(self._watches):
            self.unwatch_client(client_id)

    def _cancel(self, entry: WatchedFile) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        entry.state = WatchState.IDLE
        entry.stop.set()
        if entry.task is not None and entry.task is not asyncio.current_task():
            entry.task.cancel()

    async def _run(self, entry: WatchedFile) -> None:
        try:
            async for _changes in self._watcher_factory(entry.path, entry.stop):
                self.on_change(entry)
        except asyncio.CancelledError:
            return
        except Exception as e:
            log.info("Watch on %s failed: %s", entry.path, e)
            self.unwatch(entry.client_id, entry.path)

    def on_change(self, entry: WatchedFile) -> None:
        """Arm (or re-arm) the debounce timer."""
        if entry.timer is not None:
            entry.timer.cancel()
        entry.state = WatchState.PENDING
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.debounce, self._flush, entry)

    def _flush(self, entry: WatchedFile) -> None:
        entry.timer = None
        entry.state = WatchState.IDLE
        try:
            path, content = self.files.read_text(entry.path)
        except ReshellError as e:
            self.notify(entry.client_id, "file-update", {"path": entry.path, "error": e.message})
            self.unwatch(entry.client_id, entry.path)
            return
        self.notify(entry.client_id, "file-update", {"path": path, "content": content})
