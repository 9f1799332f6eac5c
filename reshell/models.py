"""Shared data models for reshell."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


def new_recording_id() -> str:
    """``rec-<ms in base36>-<4 random chars>``."""
    suffix = "".join(random.choices(string.digits + string.ascii_lowercase, k=4))
    return f"rec-{_base36(int(time.time() * 1000))}-{suffix}"


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionState(str, Enum):
    """Lifecycle of a shell session."""

    ACTIVE = "active"
    CLOSED = "closed"


class RecordingEvent(WireModel):
    """One timestamped entry in a recording's append-only log."""

    t: int
    type: Literal["i", "o", "r"]
    data: Optional[str] = None
    cols: Optional[int] = None
    rows: Optional[int] = None


class Recording(WireModel):
    """Event log of one assistant run inside a session."""

    id: str = Field(default_factory=new_recording_id)
    session_id: str
    session_name: str
    cwd: str
    cols: int = 80
    rows: int = 24
    started_at: str = Field(default_factory=utc_now_iso)
    ended_at: Optional[str] = None
    events: list[RecordingEvent] = Field(default_factory=list)

    def to_wire(self) -> dict:
        # endedAt stays present as null for interrupted recordings
        data = self.model_dump(by_alias=True, exclude={"events"})
        data["events"] = [e.to_wire() for e in self.events]
        return data


class RecordingMeta(WireModel):
    """Listing projection of a recording (no events)."""

    id: str
    session_id: str
    session_name: str
    cwd: str
    cols: int = 80
    rows: int = 24
    started_at: str
    ended_at: Optional[str] = None
    event_count: int = 0
    first_input: Optional[str] = None
    has_summary: bool = False
    summary_event_count: Optional[int] = None
    summary_stale: bool = False


class Summary(WireModel):
    """LLM summary cached beside a recording."""

    abstract: str = ""
    detail: str = ""
    generated_at: str = Field(default_factory=utc_now_iso)
    event_count: int = 0

    def is_stale(self, recording: Recording) -> bool:
        return len(recording.events) > self.event_count

    def as_context(self) -> str:
        """Text typed into a resumed session."""
        return f"{self.abstract}\n\n{self.detail}".strip()


SegmentKind = Literal["input", "response", "tool-use", "ascii-art", "sources"]


class TranscriptSegment(BaseModel):
    """One classified unit of a transcript."""

    type: SegmentKind
    text: str


class DiffPart(BaseModel):
    type: Literal["same", "added", "removed"]
    text: str
