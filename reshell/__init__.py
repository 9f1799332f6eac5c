"""Persistent browser shells with recorded, replayable transcripts."""

__version__ = "0.1.0"
