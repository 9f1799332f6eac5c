"""HTTP client used by the CLI to talk to a running reshell server."""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any, Optional


def get_local_ip() -> str:
    """Get the local IP address of this machine on the LAN."""
    try:
        # Connect a UDP socket to learn the outbound interface (nothing is sent)
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "127.0.0.1"


class ServerClient:
    """
    Lightweight HTTP client for the reshell REST endpoints.

    Uses stdlib urllib so the CLI works without an HTTP client dependency.
    """

    def __init__(self, base_url: str = "http://localhost:3000"):
        self.base_url = base_url.rstrip("/")

    def _get_json(self, path: str, timeout: float = 3) -> Optional[Any]:
        try:
            with urllib.request.urlopen(f"{self.base_url}{path}", timeout=timeout) as resp:
                return json.loads(resp.read())
        except (urllib.error.URLError, OSError, TimeoutError, ValueError):
            return None

    def health(self) -> Optional[dict[str, Any]]:
        return self._get_json("/api/health", timeout=2)

