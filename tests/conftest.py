"""Shared fakes: a PTY that never forks and a channel that just records."""

from __future__ import annotations

import itertools

import pytest

from reshell.config import FileConfig, RecordingConfig, ReshellConfig, SessionConfig
from reshell.server.registry import Registry
from reshell.terminal.recorder import RecordingStore

_pids = itertools.count(40000)


class FakePty:
    def __init__(self, command, cwd, cols=80, rows=24):
        self.command = command
        self.cwd = cwd
        self.cols = cols
        self.rows = rows
        self.pid = next(_pids)
        self.on_output = None
        self.on_exit = None
        self.written: list[str] = []
        self.killed = False

    def emit(self, data: str) -> None:
        self.on_output(data)

    def write(self, data: str) -> None:
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.cols, self.rows = cols, rows

    def kill(self) -> None:
        if self.killed:
            return
        self.killed = True
        if self.on_exit:
            self.on_exit(-1)


class FakeChannel:
    def __init__(self):
        self.messages: list[dict] = []
        self.closed = False

    def send(self, msg_type: str, **data) -> None:
        self.messages.append({"type": msg_type, **data})

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m["type"] == msg_type]

    def clear(self) -> None:
        self.messages.clear()


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def config(tmp_path):
    return ReshellConfig(
        sessions=SessionConfig(shell="/bin/sh"),
        files=FileConfig(root=str(tmp_path)),
        recording=RecordingConfig(enabled=False),
    )


@pytest.fixture
def store(tmp_path):
    return RecordingStore(tmp_path / "recordings")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ptys():
    return []


@pytest.fixture
def registry(config, store, clock, ptys):
    def factory(command, cwd):
        pty = FakePty(command, cwd)
        ptys.append(pty)
        return pty

    return Registry(config, store, pty_factory=factory, clock=clock)
