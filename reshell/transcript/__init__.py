"""Raw recording events → cleaned, classified transcript segments."""

from reshell.transcript.classifier import (
    build_clean_transcript,
    extract_first_input,
    format_transcript_for_prompt,
)

__all__ = [
    "build_clean_transcript",
    "extract_first_input",
    "format_transcript_for_prompt",
]
