"""Word-level diff used to show grammar corrections."""

from __future__ import annotations

import re

from reshell.models import DiffPart

_WORD_SPLIT_RE = re.compile(r"(\s+)")


def _tokens(text: str) -> list[str]:
    # re.split keeps the whitespace runs; drop the empty edge tokens it adds
    return [t for t in _WORD_SPLIT_RE.split(text) if t]


def compute_word_diff(original: str, corrected: str) -> list[DiffPart]:
    """Diff two texts word by word using a longest-common-subsequence table.

    Whitespace runs are tokens too, so joining the ``same`` and ``removed``
    parts reproduces ``original`` and joining ``same`` and ``added`` parts
    reproduces ``corrected``.
    """
    a = _tokens(original)
    b = _tokens(corrected)
    m, n = len(a), len(b)

    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1] + 1
            else:
                dp[i][j] = max(dp[i - 1][j], dp[i][j - 1])

    parts: list[DiffPart] = []
    i, j = m, n
    while i > 0 or j > 0:
        if i > 0 and j > 0 and a[i - 1] == b[j - 1]:
            parts.append(DiffPart(type="same", text=a[i - 1]))
            i -= 1
            j -= 1
        elif j > 0 and (i == 0 or dp[i][j - 1] >= dp[i - 1][j]):
            parts.append(DiffPart(type="added", text=b[j - 1]))
            j -= 1
        else:
            parts.append(DiffPart(type="removed", text=a[i - 1]))
            i -= 1
    parts.reverse()
    return parts


def format_diff(parts: list[DiffPart]) -> str:
    """Render a diff for a terminal: removed struck-through red, added bold green."""
    out = []
    for part in parts:
        if part.type == "removed":
            out.append(f"\x1b[9;31m{part.text}\x1b[0m")
        elif part.type == "added":
            out.append(f"\x1b[1;32m{part.text}\x1b[0m")
        else:
            out.append(part.text)
    return "".join(out)
