"""OS process probes: a shell's working directory and its child processes."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

log = logging.getLogger(__name__)


async def _run(args: list[str], timeout: float) -> Optional[tuple[int, str]]:
    """Run a probe command; kill it on timeout. None if it could not run."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError, OSError):
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("%s timed out after %.1fs", args[0], timeout)
        return None
    return proc.returncode, stdout.decode("utf-8", errors="replace")


async def get_cwd(pid: Optional[int], fallback: str, timeout: float = 3.0) -> str:
    """Current working directory of ``pid``, or ``fallback`` if unknown."""
    if not pid:
        return fallback

    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        pass

    # macOS: no /proc, ask lsof
    result = await _run(["lsof", "-p", str(pid), "-a", "-d", "cwd", "-Fn"], timeout)
    if result is None:
        return fallback
    for line in result[1].splitlines():
        if line.startswith("n") and len(line) > 1:
            return line[1:]
    return fallback


async def has_child_matching(pids: list[int], name: str, timeout: float = 2.0) -> bool:
    """True if any child of ``pids`` has ``name`` in its command line."""
    pids = [p for p in pids if p]
    if not pids:
        return False
    result = await _run(
        ["pgrep", "-f", "-P", ",".join(str(p) for p in pids), name], timeout
    )
    return result is not None and result[0] == 0
