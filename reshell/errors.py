"""Error taxonomy shared by the protocol router and the HTTP API."""

from __future__ import annotations

import errno


class ReshellError(Exception):
    """Base error. ``message`` is safe to show to the browser."""

    code = "error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AccessDenied(ReshellError):
    """Path resolves outside the allowed root. Raised before any filesystem access."""

    code = "access_denied"
    status_code = 403
    default_message = "Access denied"


class NotFound(ReshellError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class ReadFailure(ReshellError):
    code = "read_failure"
    status_code = 500
    default_message = "Read failed"


class Oversize(ReshellError):
    code = "oversize"
    status_code = 413
    default_message = "File too large"


class BinaryContent(ReshellError):
    code = "binary_content"
    status_code = 415
    default_message = "Binary file, cannot display"


class Timeout(ReshellError):
    code = "timeout"
    status_code = 504
    default_message = "Timed out"


class LLMError(ReshellError):
    code = "llm_error"
    status_code = 502
    default_message = "LLM call failed"


class LLMTimeout(Timeout, LLMError):
    code = "llm_timeout"
    default_message = "LLM call timed out"


class ProtocolViolation(ReshellError):
    """The only error that is fatal to a WebSocket connection."""

    code = "protocol_violation"
    status_code = 400
    default_message = "Client ID required"


def from_os_error(exc: OSError) -> ReshellError:
    """Map a filesystem error to NotFound / ReadFailure, keeping its text."""
    text = exc.strerror or str(exc)
    if exc.errno in (errno.ENOENT, errno.ENOTDIR):
        return NotFound(text)
    return ReadFailure(text)
