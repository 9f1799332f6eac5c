"""One shell process behind a pseudo-terminal."""

from __future__ import annotations

import asyncio
import codecs
import errno
import fcntl
import logging
import os
import pty
import signal
import struct
import termios
from collections.abc import Mapping
from typing import Callable, Optional

log = logging.getLogger(__name__)

READ_SIZE = 16384


def _set_nonblocking(fd: int) -> None:
    """Set a file descriptor to non-blocking mode."""
    flags = fcntl.fcntl(fd, fcntl.F_GETFL)
    fcntl.fcntl(fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)


def _set_pty_size(fd: int, rows: int, cols: int) -> None:
    """Set the PTY window size."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def shell_env(base: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Environment for a spawned shell, with colour support switched on."""
    env = dict(os.environ if base is None else base)
    env.update({
        "TERM": "xterm-256color",
        "COLORTERM": "truecolor",
        "CLICOLOR": "1",
        "CLICOLOR_FORCE": "1",
    })
    return env


class PtyHandle:
    """
    A shell process attached to a PTY, read through the asyncio event loop.

    Output is delivered as decoded text to ``on_output`` from the loop's
    reader callback; ``on_exit`` fires once with the exit code when the
    child goes away.
    """

    def __init__(
        self,
        command: list[str],
        cwd: str,
        env: Optional[Mapping[str, str]] = None,
        cols: int = 80,
        rows: int = 24,
    ):
        self.command = command
        self.cwd = cwd
        self.env = shell_env(env)
        self.cols = cols
        self.rows = rows
        self.on_output: Optional[Callable[[str], None]] = None
        self.on_exit: Optional[Callable[[int], None]] = None
        self._master_fd: Optional[int] = None
        self._child_pid: Optional[int] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._exit_code: Optional[int] = None
        self._pending = bytearray()
        self._writing = False

    @property
    def pid(self) -> Optional[int]:
        return self._child_pid

    @property
    def alive(self) -> bool:
        return self._master_fd is not None

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def spawn(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Fork the shell and start watching its output on ``loop``."""
        self._loop = loop or asyncio.get_running_loop()

        # Create PTY pair
        master_fd, slave_fd = pty.openpty()
        _set_pty_size(master_fd, self.rows, self.cols)

        pid = os.fork()

        if pid == 0:
            # === CHILD PROCESS ===
            try:
                os.close(master_fd)
                os.setsid()

                # Set the slave as the controlling terminal
                fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)

                os.dup2(slave_fd, 0)
                os.dup2(slave_fd, 1)
                os.dup2(slave_fd, 2)
                if slave_fd > 2:
                    os.close(slave_fd)

                os.chdir(self.cwd)
                os.execvpe(self.command[0], self.command, self.env)
            finally:
                os._exit(127)

        # === PARENT PROCESS ===
        os.close(slave_fd)
        self._master_fd = master_fd
        self._child_pid = pid
        _set_nonblocking(master_fd)
        self._loop.add_reader(master_fd, self._on_readable)
        log.debug("Spawned %s (pid %s) in %s", self.command[0], pid, self.cwd)

    def _on_readable(self) -> None:
        fd = self._master_fd
        if fd is None:
            return
        try:
            data = os.read(fd, READ_SIZE)
        except OSError as e:
            if e.errno == errno.EAGAIN:
                return
            data = b""  # EIO: child closed the PTY

        if not data:
            tail = self._decoder.decode(b"", final=True)
            if tail and self.on_output:
                self.on_output(tail)
            self._finish()
            return

        text = self._decoder.decode(data)
        if text and self.on_output:
            self.on_output(text)

    def _finish(self) -> None:
        """Stop reading, reap the child and report its exit code."""
        fd = self._master_fd
        if fd is None:
            return
        self._master_fd = None
        if self._loop is not None:
            self._loop.remove_reader(fd)
            if self._writing:
                self._loop.remove_writer(fd)
        self._writing = False
        self._pending.clear()
        try:
            os.close(fd)
        except OSError:
            pass

        exit_code = self._reap()
        if exit_code is None:
            exit_code = -1
            if self._loop is not None:
                self._loop.call_later(1.0, self._reap, True)
        self._exit_code = exit_code

        if self.on_exit:
            self.on_exit(exit_code)

    def _reap(self, force: bool = False) -> Optional[int]:
        """Collect the child's status; SIGKILL it first when ``force``."""
        if not self._child_pid:
            return None
        if force:
            try:
                os.kill(self._child_pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        try:
            pid, status = os.waitpid(self._child_pid, 0 if force else os.WNOHANG)
        except ChildProcessError:
            return None
        if pid == 0:
            return None
        if os.WIFEXITED(status):
            return os.WEXITSTATUS(status)
        return -1

    def write(self, data: str) -> None:
        """Send keystrokes to the shell.

        Never blocks: whatever the PTY will not take yet is kept in order and
        drained from the event loop once the fd is writable again.
        """
        if self._master_fd is None:
            return
        self._pending.extend(data.encode("utf-8"))
        if not self._writing:
            self._drain()

    def _drain(self) -> None:
        fd = self._master_fd
        if fd is None:
            return
        while self._pending:
            try:
                n = os.write(fd, self._pending)
            except BlockingIOError:
                # Input queue full; resume when the shell reads
                if not self._writing and self._loop is not None:
                    self._loop.add_writer(fd, self._drain)
                    self._writing = True
                return
            except OSError as e:
                log.warning("Write to pid %s failed: %s", self._child_pid, e)
                self._pending.clear()
                break
            del self._pending[:n]
        if self._writing:
            self._loop.remove_writer(fd)
            self._writing = False

    def resize(self, cols: int, rows: int) -> None:
        """Set the window size and let the shell redraw."""
        self.cols, self.rows = cols, rows
        if self._master_fd is None:
            return
        try:
            _set_pty_size(self._master_fd, rows, cols)
        except OSError:
            return
        if self._child_pid:
            try:
                os.kill(self._child_pid, signal.SIGWINCH)
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        """Hang up the shell and release the PTY."""
        if self._child_pid:
            for sig in (signal.SIGHUP, signal.SIGTERM):
                try:
                    os.killpg(self._child_pid, sig)
                except (ProcessLookupError, PermissionError):
                    try:
                        os.kill(self._child_pid, sig)
                    except ProcessLookupError:
                        break
        self._finish()
