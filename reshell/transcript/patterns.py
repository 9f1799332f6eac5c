"""Noise rule loading for the transcript classifier."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from reshell.config import BUILTIN_NOISE_FILE, USER_NOISE_FILE, load_yaml

log = logging.getLogger(__name__)


@dataclass
class NoiseRules:
    """Vocabulary and thresholds the classifier filters with.

    Everything here is data: the built-in table comes from ``defaults.yaml``
    and a user file can extend it.
    """

    content_threshold: int = 200
    burst_gap_ms: int = 5
    short_line: int = 5
    ellipsis_fragment: int = 8
    sparse_max_chars: int = 6
    separator_run: int = 20

    spinner_chars: str = ""
    non_record_spinners: str = ""
    response_marker: str = "⏺"
    sub_result_marker: str = "⎿"
    prompt: str = "❯"
    ide_indicator: str = "◯"
    separator_chars: str = ""
    box_chars: frozenset[str] = frozenset()

    spinner_words: list[str] = field(default_factory=list)
    interrupt_hints: list[str] = field(default_factory=list)
    content_filter_keywords: list[str] = field(default_factory=list)
    noise_keywords: list[str] = field(default_factory=list)
    noise_patterns: list[re.Pattern] = field(default_factory=list)
    tool_names: list[str] = field(default_factory=list)
    diagram_patterns: list[re.Pattern] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._spinner_re = _alternation(self.spinner_words, suffix=r"(?:…|\.\.\.)")
        self._spinner_prefix_re = _alternation(self.spinner_words, prefix="^")
        self._tool_re = _alternation(self.tool_names, prefix="^", suffix=r"\(")
        sep = re.escape(self.separator_chars) if self.separator_chars else "─"
        self._separator_re = re.compile(f"^[{sep}]+$")
        self._long_separator_re = re.compile(
            f"^([{sep}])\\1{{{max(self.separator_run - 1, 0)},}}$"
        )

    # ── predicates ──────────────────────────────────────────

    def has_spinner_word(self, line: str) -> bool:
        """``Percolating…`` style status, case-sensitive."""
        return bool(self._spinner_re and self._spinner_re.search(line))

    def starts_with_spinner_word(self, text: str) -> bool:
        return bool(self._spinner_prefix_re and self._spinner_prefix_re.match(text))

    def is_spinner_only(self, line: str) -> bool:
        return bool(line) and all(c in self.spinner_chars or c == " " for c in line)

    def starts_with_spinner(self, line: str) -> bool:
        return bool(line) and line[0] in self.non_record_spinners

    def is_separator(self, line: str) -> bool:
        return bool(self._separator_re.match(line))

    def is_long_separator(self, line: str) -> bool:
        return bool(self._long_separator_re.match(line))

    def is_tool_use(self, line: str) -> bool:
        return bool(self._tool_re and self._tool_re.match(line))

    def has_interrupt_hint(self, lower: str) -> bool:
        return any(h in lower for h in self.interrupt_hints)

    def keyword_hits(self, lower: str) -> int:
        return sum(1 for kw in self.noise_keywords if kw in lower)


def _alternation(words: list[str], prefix: str = r"\b", suffix: str = "") -> re.Pattern | None:
    if not words:
        return None
    body = "|".join(re.escape(w) for w in sorted(set(words), key=len, reverse=True))
    return re.compile(f"{prefix}(?:{body}){suffix}")


def _compile_patterns(raw_patterns: list[str]) -> list[re.Pattern]:
    """Compile a list of regex strings, skipping invalid ones."""
    compiled = []
    for pat_str in raw_patterns:
        try:
            compiled.append(re.compile(pat_str))
        except re.error as e:
            log.warning("Skipping invalid noise pattern %r: %s", pat_str, e)
    return compiled


def rules_from_dict(data: dict[str, Any], user: dict[str, Any] | None = None) -> NoiseRules:
    """Build rules from the built-in table plus optional user extensions."""
    user = user or {}
    thresholds = dict(data.get("thresholds", {}))
    thresholds.update(user.get("overrides", {}))
    glyphs = data.get("glyphs", {})

    def _lower(items: list[str]) -> list[str]:
        return [str(s).lower() for s in items]

    return NoiseRules(
        content_threshold=int(thresholds.get("content_threshold", 200)),
        burst_gap_ms=int(thresholds.get("burst_gap_ms", 5)),
        short_line=int(thresholds.get("short_line", 5)),
        ellipsis_fragment=int(thresholds.get("ellipsis_fragment", 8)),
        sparse_max_chars=int(thresholds.get("sparse_max_chars", 6)),
        separator_run=int(thresholds.get("separator_run", 20)),
        spinner_chars=glyphs.get("spinner_chars", ""),
        non_record_spinners=glyphs.get("non_record_spinners", ""),
        response_marker=glyphs.get("response_marker", "⏺"),
        sub_result_marker=glyphs.get("sub_result_marker", "⎿"),
        prompt=glyphs.get("prompt", "❯"),
        ide_indicator=glyphs.get("ide_indicator", "◯"),
        separator_chars=glyphs.get("separator_chars", "─"),
        box_chars=frozenset(glyphs.get("box_chars", "")),
        spinner_words=[
            *data.get("spinner_words", []),
            *user.get("extra_spinner_words", []),
        ],
        interrupt_hints=_lower(data.get("interrupt_hints", [])),
        content_filter_keywords=_lower(data.get("content_filter_keywords", [])),
        noise_keywords=_lower([
            *data.get("noise_keywords", []),
            *user.get("extra_keywords", []),
        ]),
        noise_patterns=_compile_patterns([
            *data.get("noise_patterns", []),
            *user.get("extra_noise_patterns", []),
        ]),
        tool_names=[*data.get("tool_names", []), *user.get("extra_tool_names", [])],
        diagram_patterns=_compile_patterns(data.get("diagram_patterns", [])),
    )


def load_noise_rules(
    builtin_file: Path = BUILTIN_NOISE_FILE,
    user_file: Path = USER_NOISE_FILE,
) -> NoiseRules:
    """Load rules from built-in defaults and the user's noise.yaml."""
    return rules_from_dict(load_yaml(builtin_file), load_yaml(user_file))


@lru_cache(maxsize=1)
def default_rules() -> NoiseRules:
    return load_noise_rules()


# ── Noise line rule table ───────────────────────────────────
#
# Evaluated top to bottom against an unwrapped line of a noise block. The
# first rule that matches names the reason the line is dropped.

NoiseRule = Callable[[str, NoiseRules], bool]


def _sparse_fragment(line: str, r: NoiseRules) -> bool:
    dense = re.sub(r"\s+", "", line)
    return len(dense) <= r.sparse_max_chars and len(line) >= len(dense) + 2


NOISE_RULES: list[tuple[str, NoiseRule]] = [
    ("spinner-frame", lambda line, r: r.starts_with_spinner(line)),
    ("spinner-only", lambda line, r: r.is_spinner_only(line)),
    ("separator", lambda line, r: r.is_separator(line)),
    ("prompt", lambda line, r: line.startswith(r.prompt)),
    ("ide-indicator", lambda line, r: line.startswith(r.ide_indicator)),
    ("short-fragment", lambda line, r: len(line) <= r.short_line),
    (
        "ellipsis-fragment",
        lambda line, r: len(line) <= r.ellipsis_fragment and line.endswith("…"),
    ),
    ("sparse-fragment", _sparse_fragment),
    ("keyword", lambda line, r: r.keyword_hits(line.lower()) > 0),
    ("spinner-word", lambda line, r: r.has_spinner_word(line)),
    ("pattern", lambda line, r: any(p.search(line) for p in r.noise_patterns)),
]


def noise_reason(line: str, rules: NoiseRules) -> str | None:
    """Name of the first noise rule matching ``line``, or None to keep it."""
    for name, rule in NOISE_RULES:
        if rule(line, rules):
            return name
    return None
