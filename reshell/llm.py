"""English correction and recording summaries via an external LLM command."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from reshell.config import LLMConfig
from reshell.errors import LLMError, LLMTimeout
from reshell.models import Summary

log = logging.getLogger(__name__)

POLISH_PROMPT = (
    "Improve this English text to sound more natural and polished while keeping "
    "the same meaning. Fix any grammar or spelling errors too. Rules: Do NOT "
    "capitalize the first letter if the original doesn't. Do NOT add trailing "
    "punctuation if the original doesn't have it. Return ONLY the improved text, "
    "nothing else:\n\n{text}"
)

GRAMMAR_PROMPT = (
    "Fix grammar and improve this English text. Rules: Do NOT capitalize the "
    "first letter if the original doesn't. Do NOT add trailing punctuation "
    "(period, comma, etc.) if the original doesn't have it. Only fix actual "
    "grammar and spelling errors. Return ONLY the corrected text, nothing "
    "else:\n\n{text}"
)

SUMMARY_PROMPT = """You are summarizing a terminal recording of an AI coding assistant session.

Write your response in EXACTLY this format (keep the ABSTRACT: and DETAIL: labels):

ABSTRACT: A single sentence (max 30 words) summarizing what was accomplished.

DETAIL:
A detailed summary of the session (3-8 paragraphs). Cover:
- What the user asked for or wanted to achieve
- Key actions taken and decisions made
- Files modified or created
- Problems encountered and how they were resolved
- Final outcome and what was accomplished

Write in past tense. Be specific about file names, functions, and technical details. Do not use bullet points in the detail section; write flowing paragraphs.

Transcript:
{transcript}"""

ABSTRACT_RE = re.compile(r"^ABSTRACT:\s*(.+?)(?:\n|$)", re.IGNORECASE)
DETAIL_RE = re.compile(r"DETAIL:\s*\n?(.*)", re.IGNORECASE | re.DOTALL)


class CommandLLM:
    """Runs ``command + [prompt]`` and returns its stdout."""

    def __init__(self, command: list[str], timeout: float = 30.0):
        self.command = list(command)
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: LLMConfig) -> "CommandLLM":
        return cls(config.command, config.timeout)

    async def complete(self, prompt: str, timeout: Optional[float] = None) -> str:
        timeout = timeout or self.timeout
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                prompt,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise LLMError(f"Failed to run {self.command[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning("%s timed out after %.0fs", self.command[0], timeout)
            raise LLMTimeout()

        output = stdout.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0 or not output:
            err = stderr.decode("utf-8", errors="replace").strip()
            raise LLMError(err or f"{self.command[0]} exited with code {proc.returncode}")
        return output

    async def correct_english(self, text: str, mode: str = "grammar") -> str:
        template = POLISH_PROMPT if mode == "polish" else GRAMMAR_PROMPT
        return (await self.complete(template.format(text=text))).strip()

    async def summarize(self, transcript: str, event_count: int, timeout: Optional[float] = None) -> Summary:
        raw = await self.complete(SUMMARY_PROMPT.format(transcript=transcript), timeout)
        abstract, detail = parse_summary(raw)
        return Summary(abstract=abstract, detail=detail, event_count=event_count)


def parse_summary(raw: str) -> tuple[str, str]:
    """Split an ``ABSTRACT: ... DETAIL: ...`` reply. Unlabelled text is all detail."""
    text = raw.strip()
    match = ABSTRACT_RE.match(text)
    if not match:
        return "", text
    abstract = match.group(1).strip()
    detail_match = DETAIL_RE.search(text)
    if detail_match:
        detail = detail_match.group(1).strip()
    else:
        detail = text.replace(match.group(0), "", 1).strip()
    return abstract, detail
