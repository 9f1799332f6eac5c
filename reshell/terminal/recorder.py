"""Append-only event logs for assistant runs, and their on-disk storage."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from reshell.errors import NotFound
from reshell.models import Recording, RecordingEvent, RecordingMeta, Summary, utc_now_iso
from reshell.transcript.classifier import extract_first_input

log = logging.getLogger(__name__)


class Recorder:
    """Appends timestamped events to one in-progress recording."""

    def __init__(self, recording: Recording, clock=time.monotonic):
        self.recording = recording
        self._clock = clock
        self._start = clock()

    @property
    def id(self) -> str:
        return self.recording.id

    @property
    def finalized(self) -> bool:
        return self.recording.ended_at is not None

    def _elapsed_ms(self) -> int:
        return int(round((self._clock() - self._start) * 1000))

    def _append(self, event: RecordingEvent) -> None:
        if self.finalized:
            return
        self.recording.events.append(event)

    def record_output(self, data: str) -> None:
        self._append(RecordingEvent(t=self._elapsed_ms(), type="o", data=data))

    def record_input(self, data: str) -> None:
        self._append(RecordingEvent(t=self._elapsed_ms(), type="i", data=data))

    def record_resize(self, cols: int, rows: int) -> None:
        self._append(RecordingEvent(t=self._elapsed_ms(), type="r", cols=cols, rows=rows))
        self.recording.cols = cols
        self.recording.rows = rows

    def finalize(self) -> Recording:
        if not self.finalized:
            self.recording.ended_at = utc_now_iso()
        return self.recording

    @property
    def has_input(self) -> bool:
        return bool(extract_first_input(self.recording.events))


class RecordingStore:
    """Recordings as ``<id>.json`` with a ``<id>.summary.json`` sidecar."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, recording_id: str) -> Path:
        # ids are generated server-side; reject anything that could escape
        if not recording_id or os.sep in recording_id or recording_id.startswith("."):
            raise NotFound("Recording not found")
        return self.directory / f"{recording_id}.json"

    def _summary_path(self, recording_id: str) -> Path:
        return self._path(recording_id).with_suffix(".summary.json")

    def save(self, recording: Recording) -> None:
        """Write the recording. Failures are logged; the in-memory log is kept."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = self._path(recording.id).with_suffix(".tmp")
            tmp.write_text(json.dumps(recording.to_wire()))
            tmp.replace(self._path(recording.id))
        except OSError as e:
            log.error("Failed to flush recording %s: %s", recording.id, e)

    def load(self, recording_id: str) -> Recording:
        try:
            raw = json.loads(self._path(recording_id).read_text())
            return Recording.model_validate(raw)
        except (OSError, ValueError, ValidationError):
            raise NotFound("Recording not found")

    def delete(self, recording_id: str) -> None:
        """Remove the recording and its cached summary."""
        for path in (self._path(recording_id), self._summary_path(recording_id)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def list(self) -> list[RecordingMeta]:
        """Metadata for every recording with real input, newest first."""
        if not self.directory.exists():
            return []
        metas = []
        for path in self.directory.glob("*.json"):
            if path.name.endswith(".summary.json"):
                continue
            try:
                recording = Recording.model_validate(json.loads(path.read_text()))
            except (OSError, ValueError, ValidationError):
                log.warning("Skipping unreadable recording %s", path.name)
                continue
            first_input = extract_first_input(recording.events)
            if not first_input:
                continue
            summary = self.load_summary(recording.id)
            metas.append(RecordingMeta(
                id=recording.id,
                session_id=recording.session_id,
                session_name=recording.session_name,
                cwd=recording.cwd,
                cols=recording.cols,
                rows=recording.rows,
                started_at=recording.started_at,
                ended_at=recording.ended_at,
                event_count=len(recording.events),
                first_input=first_input,
                has_summary=summary is not None,
                summary_event_count=summary.event_count if summary else None,
                summary_stale=summary.is_stale(recording) if summary else False,
            ))
        metas.sort(key=lambda m: m.started_at, reverse=True)
        return metas

    def load_summary(self, recording_id: str) -> Optional[Summary]:
        try:
            raw = json.loads(self._summary_path(recording_id).read_text())
            return Summary.model_validate(raw)
        except (OSError, ValueError, ValidationError):
            return None

    def save_summary(self, recording_id: str, summary: Summary) -> None:
        try:
            self._summary_path(recording_id).write_text(
                json.dumps(summary.to_wire(), indent=2)
            )
        except OSError as e:
            log.error("Failed to write summary for %s: %s", recording_id, e)

    def finish(self, recorder: Recorder) -> bool:
        """Finalize and persist, or discard a recording nobody typed into.

        Returns True if the recording was kept.
        """
        recording = recorder.finalize()
        if not recorder.has_input:
            self.delete(recording.id)
            log.info("Recording discarded (no input): %s", recording.id)
            return False
        self.save(recording)
        log.info("Recording stopped: %s", recording.id)
        return True
