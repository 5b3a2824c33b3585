"""Structured exception hierarchy for the user export.

Every failure the export can surface derives from ExportError so the CLI
can report it uniformly. Two of them (RateLimitedError and
NetworkFailureError) are retryable and normally never escape the fetch
client; the rest abort the current run and leave the persisted cursor
where the last successful page put it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "ExportError",
    "ConfigurationError",
    "RateLimitedError",
    "NetworkFailureError",
    "UpstreamError",
    "MalformedResponseError",
    "PaginationLoopError",
    "ExhaustedRetriesError",
    "StateIOError",
]


class ExportError(Exception):
    """Base exception for all export errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if self.details:
            detail_lines = [f"  {k}: {v}" for k, v in self.details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(ExportError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, *, key: Optional[str] = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        super().__init__(message, details=details, **kwargs)


class RateLimitedError(ExportError):
    """Upstream answered HTTP 429. Retried without limit."""

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: Optional[str] = None) -> None:
        details: Dict[str, Any] = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, details=details)
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> Optional[float]:
        """Retry-After in seconds, or None when absent or not a number."""
        if not self.retry_after:
            return None
        try:
            seconds = float(self.retry_after)
        except (TypeError, ValueError):
            return None
        return seconds if seconds > 0 else None


class NetworkFailureError(ExportError):
    """Transport-level failure (DNS, connect, read timeout, reset)."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        details: Dict[str, Any] = {}
        if cause is not None:
            details["cause_type"] = type(cause).__name__
        super().__init__(message, details=details)
        self.cause = cause


class UpstreamError(ExportError):
    """Non-retryable upstream response (any non-2xx other than 429)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if body:
            details["body"] = body[:500]
        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code


class MalformedResponseError(ExportError):
    """Response body is missing the expected records/cursor shape."""


class PaginationLoopError(MalformedResponseError):
    """Upstream handed back the same cursor it was asked for."""

    def __init__(self, cursor: str) -> None:
        super().__init__(
            "Upstream returned the cursor that was just requested; pagination would never end",
            details={"cursor": cursor},
        )
        self.cursor = cursor


class ExhaustedRetriesError(ExportError):
    """A retryable failure kept happening past its retry budget."""

    def __init__(
        self,
        message: str,
        *,
        attempts: Optional[int] = None,
        operation: Optional[str] = None,
        last_error: Optional[BaseException] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if attempts is not None:
            details["attempts"] = attempts
        if operation:
            details["operation"] = operation
        if last_error is not None:
            details["last_error"] = str(last_error)
            details["error_type"] = type(last_error).__name__
        super().__init__(message, details=details)
        self.attempts = attempts
        self.last_error = last_error


class StateIOError(ExportError):
    """Reading or writing the cursor, watermark or sink file failed."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if path:
            details["path"] = path
        if operation:
            details["operation"] = operation
        if original_error is not None:
            details["original_error"] = str(original_error)
        super().__init__(message, details=details)
        self.path = path
        self.original_error = original_error
