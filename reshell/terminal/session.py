"""Shell sessions: a PTY, its redraw history and an optional recording."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from reshell.models import Recording, SessionState
from reshell.terminal.pty_handle import PtyHandle
from reshell.terminal.recorder import Recorder

log = logging.getLogger(__name__)


class History:
    """Bounded FIFO of output chunks used to redraw a re-attached terminal.

    When ``cap`` is exceeded only the newest ``keep`` chunks survive; order is
    always preserved.
    """

    def __init__(self, cap: int = 1000, keep: int = 500):
        self.cap = cap
        self.keep = min(keep, cap)
        self._chunks: list[str] = []

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)
        if len(self._chunks) > self.cap:
            self._chunks = self._chunks[-self.keep:]

    def chunks(self) -> list[str]:
        return list(self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self):
        return iter(list(self._chunks))


class Session:
    """
    A logical shell tab.

    Owns exactly one PTY for its lifetime. Output from the PTY is written to
    history and to the active recorder synchronously, then handed to
    ``on_output`` for delivery; whether anyone is listening is the
    registry's concern.
    """

    def __init__(
        self,
        session_id: str,
        name: str,
        cwd: str,
        pty: PtyHandle,
        history: Optional[History] = None,
    ):
        self.id = session_id
        self.name = name
        self.cwd = cwd
        self.pty = pty
        self.history = history or History()
        self.recorder: Optional[Recorder] = None
        self.state = SessionState.ACTIVE
        self.assistant_running = False
        self.on_output: Optional[Callable[["Session", str], None]] = None
        self.on_exit: Optional[Callable[["Session", int], None]] = None

        pty.on_output = self._handle_output
        pty.on_exit = self._handle_exit

    @property
    def pid(self) -> Optional[int]:
        return self.pty.pid

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.ACTIVE

    def _handle_output(self, data: str) -> None:
        self.history.append(data)
        if self.recorder is not None:
            self.recorder.record_output(data)
        if self.on_output:
            self.on_output(self, data)

    def _handle_exit(self, exit_code: int) -> None:
        log.info("PTY exited for session %s: code=%s", self.id, exit_code)
        if self.on_exit:
            self.on_exit(self, exit_code)

    # ── pass-through operations ─────────────────────────────

    def write(self, data: str) -> bool:
        """Send input. A closed session ignores it."""
        if not self.is_open:
            return False
        if self.recorder is not None:
            self.recorder.record_input(data)
        self.pty.write(data)
        return True

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the PTY. Recorded for replay, never stored in history."""
        if not self.is_open:
            return False
        self.pty.resize(cols, rows)
        if self.recorder is not None:
            self.recorder.record_resize(cols, rows)
        return True

    # ── recording ───────────────────────────────────────────

    def start_recording(self, cwd: str) -> Recorder:
        recording = Recording(
            session_id=self.id,
            session_name=self.name,
            cwd=cwd,
            cols=self.pty.cols,
            rows=self.pty.rows,
        )
        self.recorder = Recorder(recording)
        self.assistant_running = True
        return self.recorder

    def stop_recording(self) -> Optional[Recorder]:
        """Detach the active recorder (finalizing is the caller's job)."""
        recorder, self.recorder = self.recorder, None
        self.assistant_running = False
        return recorder

    def close(self) -> None:
        """Kill the PTY. Further input and resizes become no-ops."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.pty.kill()
