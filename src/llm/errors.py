"""Failure taxonomy for calls to the generative service."""

from __future__ import annotations

from src.pipeline_config import ErrorKind

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
REQUEST_TIMEOUT = "REQUEST_TIMEOUT"


class GenerationError(Exception):
    """Base class for classified generative-service failures."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED


class QuotaExceededError(GenerationError):
    """Upstream quota/rate limit hit. Never retried internally.

    ``raw`` keeps the upstream message verbatim for the operator log.
    """

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(self, raw: str = "") -> None:
        super().__init__(RATE_LIMIT_EXCEEDED)
        self.raw = raw


class RequestTimeoutError(GenerationError):
    """A single attempt exceeded the wall-clock timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float | None = None) -> None:
        super().__init__(REQUEST_TIMEOUT)
        self.timeout = timeout


def classify_error(exc: BaseException) -> tuple[ErrorKind, str]:
    """Return ``(kind, reason)`` where *reason* is the short string stored on jobs."""
    if isinstance(exc, QuotaExceededError):
        return ErrorKind.QUOTA_EXCEEDED, RATE_LIMIT_EXCEEDED
    if isinstance(exc, RequestTimeoutError):
        return ErrorKind.TIMEOUT, REQUEST_TIMEOUT
    reason = str(exc) or type(exc).__name__
    return ErrorKind.UNCLASSIFIED, reason
