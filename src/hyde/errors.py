"""Exception types shared across Hyde.

Every error carries a ``retryable`` hint. ``False`` means the failure is
terminal and must be surfaced immediately; ``True`` leaves the decision to
the transient-failure classifier in :mod:`hyde.retry`.
"""

from __future__ import annotations

from typing import Any


class HydeError(RuntimeError):
    """Base class for Hyde errors."""

    retryable: bool = True

    def __init__(self, message: str, *, raw: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.raw = raw or {}


class ContentPolicyError(HydeError):
    """The music service rejected a prompt (e.g. copyrighted material)."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        raw: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, raw=raw)
        self.message = message
        self.suggestion = suggestion

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}. Suggested prompt: {self.suggestion}"
        return self.message


class NotFoundError(HydeError):
    """A playlist, track or session does not exist."""

    retryable = False


class ValidationError(HydeError):
    """Rejected input (unknown fields, bad status values, empty prompt)."""

    retryable = False


class ConfigurationError(HydeError):
    """A required setting (API key, bucket URL) is missing."""

    retryable = False


class OperationCancelledError(HydeError):
    """A retried call was abandoned because its caller no longer wants it."""

    retryable = False


class GenerationError(HydeError):
    """A provider call completed but produced no usable payload."""


class StorageError(HydeError):
    """Object storage is misconfigured or unavailable."""


def describe_error(error: BaseException) -> str:
    """Convert any exception into a plain, serializable message.

    Provider SDKs attach structured bodies (``{"detail": {"message": ...}}``)
    whose ``str()`` is a noisy repr, so prefer the nested message when present.
    """
    if isinstance(error, HydeError):
        return str(error)

    body = getattr(error, "body", None)
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, dict) and isinstance(detail.get("message"), str):
            return detail["message"]
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(body.get("error"), str):
            return body["error"]

    message = str(error).strip()
    return message or type(error).__name__
