"""ANSI escape handling for terminal input and output streams."""

from __future__ import annotations

import re

_OSC_RE = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")
_CSI_RE = re.compile(r"\x1b\[[?>=!]?[0-9;]*[A-Za-z]")
_ESC_OTHER_RE = re.compile(r"\x1b[^\[\]].?")
_CURSOR_FORWARD_RE = re.compile(r"\x1b\[\d*C")

# Input side: CSI may end in ~ (function keys), SS3 covers arrow keys in
# application mode.
_INPUT_CSI_RE = re.compile(r"\x1b\[[?>=!]?[0-9;]*[A-Za-z~]")
_INPUT_SS3_RE = re.compile(r"\x1bO.")
_INPUT_ESC_RE = re.compile(r"\x1b.")

BACKSPACES = ("\x7f", "\x08")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes and carriage returns from text."""
    text = _OSC_RE.sub("", text)
    text = _CSI_RE.sub("", text)
    text = _ESC_OTHER_RE.sub("", text)
    return text.replace("\r", "")


def strip_ansi_for_transcript(text: str) -> str:
    """Like :func:`strip_ansi`, but cursor-forward becomes a single space.

    TUIs position words with ``ESC[nC`` instead of writing spaces; deleting
    the code outright glues the words together.
    """
    return strip_ansi(_CURSOR_FORWARD_RE.sub(" ", text))


def clean_input(raw: str) -> str:
    """Replay keystrokes into the text they produce.

    Escape sequences (arrows, focus events such as ``ESC[O``) are dropped,
    backspace removes the previous character and other control characters
    are ignored.
    """
    s = _OSC_RE.sub("", raw)
    s = _INPUT_CSI_RE.sub("", s)
    s = _INPUT_SS3_RE.sub("", s)
    s = _INPUT_ESC_RE.sub("", s)

    chars: list[str] = []
    for ch in s:
        if ch in BACKSPACES:
            if chars:
                chars.pop()
        elif ord(ch) >= 0x20:
            chars.append(ch)
    return "".join(chars)


def visible_lines(chunks: list[str], count: int) -> list[str]:
    """Approximate the last ``count`` screen lines from raw output chunks.

    There is no terminal emulator on the server, so this only strips escape
    codes from the tail of the stream and keeps the text after the last
    carriage return of every line. Most recent line first.
    """
    tail = "".join(chunks[-50:])
    lines = []
    for raw in tail.split("\n"):
        if "\r" in raw.rstrip("\r"):
            raw = raw.rstrip("\r").rsplit("\r", 1)[-1]
        lines.append(strip_ansi_for_transcript(raw).rstrip())
    while lines and not lines[-1]:
        lines.pop()
    return list(reversed(lines[-count:]))
