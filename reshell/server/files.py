"""Sandboxed file access for the browser's file viewer."""

from __future__ import annotations

import os
from typing import Any

from reshell.errors import AccessDenied, BinaryContent, Oversize, from_os_error

BINARY_PROBE_BYTES = 8192


def _within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class FileAccess:
    """All path-taking operations, confined to ``root`` and its descendants."""

    def __init__(self, root: str, read_limit: int = 512 * 1024):
        self.root = os.path.abspath(os.path.expanduser(root))
        self.real_root = os.path.realpath(self.root)
        self.read_limit = read_limit

    def resolve(self, path: str) -> str:
        """Absolute form of ``path``; AccessDenied if it leaves the root.

        The string check runs first, so nothing on disk is touched for a
        denied path. Paths that pass are checked again with symlinks resolved.
        """
        resolved = os.path.abspath(os.path.expanduser(path or self.root))
        if not _within(resolved, self.root):
            raise AccessDenied()
        if not _within(os.path.realpath(resolved), self.real_root):
            raise AccessDenied()
        return resolved

    def list_directory(self, path: str, show_hidden: bool = False) -> tuple[str, list[dict[str, Any]]]:
        """Entries of a directory, directories first, names case-insensitive."""
        resolved = self.resolve(path)
        try:
            with os.scandir(resolved) as it:
                entries = [
                    {
                        "name": entry.name,
                        "type": "directory" if entry.is_dir() else "file",
                        "path": os.path.join(resolved, entry.name),
                    }
                    for entry in it
                    if show_hidden or not entry.name.startswith(".")
                ]
        except OSError as e:
            raise from_os_error(e) from e
        entries.sort(key=lambda e: (e["type"] != "directory", e["name"].casefold()))
        return resolved, entries

    def check_size(self, resolved: str, limit: int) -> int:
        try:
            size = os.stat(resolved).st_size
        except OSError as e:
            raise from_os_error(e) from e
        if size > limit:
            raise Oversize(f"File too large (max {limit // 1024}KB)")
        return size

    def read_text(self, path: str, limit: int | None = None) -> tuple[str, str]:
        """Read a text file: size ceiling, NUL probe, then full UTF-8 decode."""
        resolved = self.resolve(path)
        self.check_size(resolved, limit or self.read_limit)
        try:
            with open(resolved, "rb") as f:
                if b"\x00" in f.read(BINARY_PROBE_BYTES):
                    raise BinaryContent()
                f.seek(0)
                data = f.read()
        except OSError as e:
            raise from_os_error(e) from e
        return resolved, data.decode("utf-8", errors="replace")
