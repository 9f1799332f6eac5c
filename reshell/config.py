"""Configuration management for reshell."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from rich.logging import RichHandler


RESHELL_DIR = Path(os.environ.get("RESHELL_HOME", Path.home() / ".reshell"))
CONFIG_FILE = RESHELL_DIR / "config.yaml"
USER_NOISE_FILE = RESHELL_DIR / "noise.yaml"
RECORDINGS_DIR = RESHELL_DIR / "recordings"

# Bundled classifier vocabulary shipped with the package
BUILTIN_NOISE_FILE = Path(__file__).parent / "transcript" / "defaults.yaml"


def _default_root() -> str:
    return os.environ.get("HOME") or "/tmp"


class ServerConfig(BaseModel):
    """Server settings."""

    port: int = 3000
    host: str = "127.0.0.1"


class SessionConfig(BaseModel):
    """Shell session and client retention settings."""

    shell: str = Field(default_factory=lambda: os.environ.get("SHELL") or "/bin/sh")
    history_cap: int = 1000
    history_keep: int = 500
    retention_seconds: int = 60 * 60
    reap_interval: int = 60
    cwd_timeout: float = 3.0


class FileConfig(BaseModel):
    """File browser / viewer settings."""

    root: str = Field(default_factory=_default_root)
    read_limit: int = 512 * 1024
    http_limit: int = 10 * 1024 * 1024
    debounce_ms: int = 100


class RecordingConfig(BaseModel):
    """Assistant session recording settings."""

    enabled: bool = True
    assistant_command: str = "claude"
    poll_seconds: float = 3.0
    probe_timeout: float = 2.0
    flush_seconds: float = 30.0


class LLMConfig(BaseModel):
    """External text-in/text-out command used for corrections and summaries."""

    command: list[str] = Field(default_factory=lambda: ["claude", "-p"])
    timeout: float = 30.0
    summary_timeout: float = 60.0


class ReplayConfig(BaseModel):
    """Bring-back (replay into a new session) timing."""

    launch_command: str = "claude"
    settle_delay: float = 0.8
    poll_interval: float = 0.3
    confirm_delay: float = 0.5
    safety_timeout: float = 15.0
    chunk_size: int = 4096
    chunk_delay: float = 0.05
    context_limit: int = 50_000


class ReshellConfig(BaseModel):
    """Root configuration model."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    files: FileConfig = Field(default_factory=FileConfig)
    recording: RecordingConfig = Field(default_factory=RecordingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)


def ensure_dirs() -> None:
    """Create reshell directories if they don't exist."""
    RESHELL_DIR.mkdir(parents=True, exist_ok=True)
    RECORDINGS_DIR.mkdir(parents=True, exist_ok=True)


def load_config() -> ReshellConfig:
    """Load configuration from ~/.reshell/config.yaml, falling back to defaults."""
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return ReshellConfig(**raw)
    return ReshellConfig()


def save_default_config() -> Path:
    """Write default config to ~/.reshell/config.yaml."""
    ensure_dirs()
    config = ReshellConfig()
    with open(CONFIG_FILE, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
    return CONFIG_FILE


def load_yaml(path: Path) -> dict[str, Any]:
    """Safely load a YAML file, returning empty dict on failure."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def setup_logging(level: str = "INFO") -> None:
    """Route the ``reshell`` loggers through rich."""
    handler = RichHandler(show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger("reshell")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False
