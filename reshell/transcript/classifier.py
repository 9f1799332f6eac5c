"""Transcript classifier — turns a recording's raw event log into segments.

Two independent problems are solved here:

* **Input reconstruction.** Keystrokes arrive one event at a time. They are
  coalesced into submitted lines, with backspace editing replayed and escape
  sequences dropped.
* **Output classification.** Output events are grouped into bursts by
  timing. A burst that starts with the response marker, or is large, is a
  *content* block and keeps its structure (tables, diagrams, indentation);
  everything else is a *noise* block and is filtered line by line against
  the rule table in :mod:`reshell.transcript.patterns`.

The classifier is pure: the same events always produce the same segments.
"""

from __future__ import annotations

import logging
import re
import textwrap
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from reshell.models import RecordingEvent, SegmentKind, TranscriptSegment
from reshell.transcript.ansi import clean_input, strip_ansi_for_transcript
from reshell.transcript.patterns import NoiseRules, default_rules, noise_reason

log = logging.getLogger(__name__)

EventLike = Union[RecordingEvent, dict[str, Any]]

_LINE_BREAK_RE = re.compile(r"[\r\n]+")
_MARKER_WORD_RE = re.compile(r"^\s*(\w)")


@dataclass
class OutputBlock:
    """A burst of output events with no gap larger than the burst window."""

    kind: str  # "content" | "noise"
    raw: str


def _coerce(events: Iterable[EventLike]) -> list[RecordingEvent]:
    return [
        e if isinstance(e, RecordingEvent) else RecordingEvent.model_validate(e)
        for e in events
    ]


# ── Output: burst grouping ──────────────────────────────────


def classify_burst(raw: str, rules: NoiseRules) -> str:
    """Decide whether a burst is ``content`` or ``noise``."""
    text = strip_ansi_for_transcript(raw).strip()

    marker = rules.response_marker
    if text.startswith(marker) and _MARKER_WORD_RE.match(text[len(marker):]):
        after = text[len(marker):].lstrip()
        if not rules.starts_with_spinner_word(after):
            return "content"

    if len(raw) >= rules.content_threshold:
        # A large payload full of banner keywords is the welcome box
        if rules.keyword_hits(text.lower()) <= 1:
            return "content"

    return "noise"


def group_output_blocks(events: Sequence[RecordingEvent], rules: NoiseRules) -> list[OutputBlock]:
    if not events:
        return []

    runs: list[list[RecordingEvent]] = [[events[0]]]
    for prev, cur in zip(events, events[1:]):
        if cur.t - prev.t > rules.burst_gap_ms:
            runs.append([cur])
        else:
            runs[-1].append(cur)

    blocks = []
    for run in runs:
        raw = "".join(e.data or "" for e in run)
        blocks.append(OutputBlock(kind=classify_burst(raw, rules), raw=raw))
    return blocks


# ── Output: noise blocks ────────────────────────────────────


def unwrap_line(raw: str, rules: NoiseRules) -> str:
    """Strip ``│…│`` panel borders and leading response decorators."""
    t = raw.strip()
    if len(t) > 1 and t.startswith("│") and t.endswith("│"):
        t = t[1:-1].strip()
        # multi-column boxes leave a trailing border behind
        t = re.sub(r"\s*│\s*$", "", t).strip()
    for marker in (rules.response_marker, rules.sub_result_marker):
        if t.startswith(marker):
            t = t[len(marker):].lstrip()
    return t.strip()


def process_noise_block(raw: str, rules: NoiseRules) -> list[TranscriptSegment]:
    clean: list[str] = []
    prev = ""
    for line in strip_ansi_for_transcript(raw).split("\n"):
        cleaned = unwrap_line(line, rules)
        if not cleaned:
            if clean and clean[-1] != "":
                clean.append("")
            continue
        if noise_reason(cleaned, rules):
            continue
        if cleaned == prev:
            continue
        clean.append(cleaned)
        prev = cleaned

    text = "\n".join(clean).strip()
    return [TranscriptSegment(type="response", text=text)] if text else []


# ── Output: content blocks ──────────────────────────────────


def clean_content_lines(raw: str, rules: NoiseRules) -> list[str]:
    """Light filtering that keeps box drawing, short lines and indentation."""
    clean: list[str] = []
    for line in strip_ansi_for_transcript(raw).split("\n"):
        t = line.rstrip()
        for marker in (rules.response_marker, rules.sub_result_marker):
            t = re.sub(rf"^\s*{re.escape(marker)}\s?", "", t)
        trimmed = t.strip()
        lower = trimmed.lower()

        if trimmed.startswith(rules.ide_indicator):
            continue
        if rules.is_long_separator(trimmed):
            continue
        if trimmed.startswith(rules.prompt):
            continue
        if rules.has_interrupt_hint(lower):
            continue
        if rules.starts_with_spinner(trimmed) or rules.is_spinner_only(trimmed):
            continue
        if rules.has_spinner_word(trimmed):
            continue
        if any(kw in lower for kw in rules.content_filter_keywords):
            continue

        if not trimmed:
            if clean and clean[-1] != "":
                clean.append("")
            continue
        clean.append(t)

    while clean and clean[-1] == "":
        clean.pop()

    indents = [len(l) - len(l.lstrip()) for l in clean if l]
    margin = min(indents, default=0)
    if margin:
        clean = [l[margin:] if l else l for l in clean]
    return clean


def classify_line(line: str, rules: NoiseRules) -> SegmentKind:
    if rules.is_tool_use(line):
        return "tool-use"

    if re.match(r"(?i)^Sources:", line) or re.match(r"^- https?://", line):
        return "sources"

    non_space = [c for c in line if c != " "]
    if non_space:
        box = sum(1 for c in non_space if c in rules.box_chars)
        if box / len(non_space) > 0.5:
            return "ascii-art"
        if box >= 2 and non_space[0] in rules.box_chars and non_space[-1] in rules.box_chars:
            return "ascii-art"

    if any(p.search(line) for p in rules.diagram_patterns):
        return "ascii-art"

    return "response"


def detect_diagram_regions(lines: list[str], rules: NoiseRules) -> list[SegmentKind]:
    """Per-line kinds, with label lines between diagram lines absorbed."""
    marks: list[str] = ["blank" if line == "" else classify_line(line, rules) for line in lines]

    # Bridge gaps of up to two lines between ascii-art lines
    i = 0
    while i < len(marks):
        if marks[i] == "ascii-art":
            for j in range(i + 1, min(i + 3, len(marks) - 1) + 1):
                if marks[j] == "ascii-art":
                    for k in range(i + 1, j):
                        marks[k] = "ascii-art"
                    i = j - 1
                    break
        i += 1

    # Blank lines belong to whatever came before them
    for i, mark in enumerate(marks):
        if mark == "blank":
            marks[i] = marks[i - 1] if i > 0 else "response"

    return marks  # type: ignore[return-value]


def _segment_text(lines: list[str]) -> str:
    while lines and not lines[0].strip():
        lines = lines[1:]
    return textwrap.dedent("\n".join(lines)).rstrip()


def classify_content_lines(lines: list[str], rules: NoiseRules) -> list[TranscriptSegment]:
    kinds = detect_diagram_regions(lines, rules)
    segments: list[TranscriptSegment] = []
    current: SegmentKind | None = None
    buf: list[str] = []

    for line, kind in zip(lines, kinds):
        if kind != current and buf:
            text = _segment_text(buf)
            if text:
                segments.append(TranscriptSegment(type=current, text=text))
            buf = []
        current = kind
        buf.append(line)

    if buf and current:
        text = _segment_text(buf)
        if text:
            segments.append(TranscriptSegment(type=current, text=text))
    return segments


def process_content_block(raw: str, rules: NoiseRules) -> list[TranscriptSegment]:
    lines = clean_content_lines(raw, rules)
    if not lines:
        return []
    return classify_content_lines(lines, rules)


# ── Input ───────────────────────────────────────────────────


def input_lines(buffer: str) -> list[str]:
    """Split a keystroke buffer on Enter and replay editing for each line."""
    out = []
    for part in _LINE_BREAK_RE.split(buffer):
        text = clean_input(part).strip()
        if text:
            out.append(text)
    return out


# ── Main entry point ────────────────────────────────────────


def is_echo_key(data: str) -> bool:
    """A single control character whose echo is terminal noise, not output."""
    return len(data) == 1 and not data.isprintable()


def build_clean_transcript(
    events: Iterable[EventLike],
    rules: NoiseRules | None = None,
) -> list[TranscriptSegment]:
    """Process raw recording events into a clean, ordered transcript."""
    rules = rules or default_rules()
    segments: list[TranscriptSegment] = []
    input_buf = ""
    pending: list[RecordingEvent] = []
    last_key: str | None = None

    def flush_output() -> None:
        nonlocal pending
        blocks = group_output_blocks(pending, rules)
        pending = []
        for block in blocks:
            try:
                if block.kind == "noise":
                    segments.extend(process_noise_block(block.raw, rules))
                else:
                    segments.extend(process_content_block(block.raw, rules))
            except Exception:
                log.exception("Failed to classify a %s block; skipping it", block.kind)

    def flush_input() -> None:
        nonlocal input_buf
        segments.extend(TranscriptSegment(type="input", text=t) for t in input_lines(input_buf))
        input_buf = ""

    for ev in _coerce(events):
        data = ev.data or ""
        if ev.type == "i":
            input_buf += data
            last_key = data if is_echo_key(data) else None
            # Enter: output produced while typing belongs before the input line
            if "\r" in data or "\n" in data:
                flush_output()
                flush_input()
        elif ev.type == "o":
            if last_key is not None and data == last_key:
                last_key = None  # local echo of a control key
                continue
            last_key = None
            pending.append(ev)

    flush_output()
    if input_buf.strip():
        flush_input()
    return segments


def format_transcript_for_prompt(segments: Iterable[TranscriptSegment]) -> str:
    """Render segments as ``[type] text`` lines."""
    return "\n".join(f"[{s.type}] {s.text}" for s in segments)


def extract_first_input(events: Iterable[EventLike]) -> str:
    """First submitted input line of a recording, or ``""`` if none."""
    buf = ""
    for ev in _coerce(events):
        if ev.type != "i":
            continue
        buf += ev.data or ""
        match = _LINE_BREAK_RE.search(buf)
        while match is not None:
            line = clean_input(buf[: match.start()]).strip()
            if line:
                return line
            buf = buf[match.end():]
            match = _LINE_BREAK_RE.search(buf)
    return clean_input(buf).strip()
