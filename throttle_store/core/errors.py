"""Application-level exception types.

This module defines domain errors used across the policy and HTTP layers,
enabling consistent error handling, logging, and API responses.

The counter store adapters do not raise these: transport failures from the
backing store propagate as the client library's own exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    backend: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


@dataclass
class RateLimitExceededAppError(AppError):
    """Raised when a requester exhausted its budget for the current window.

    Attributes:
        headers: Response headers (Retry-After, X-RateLimit-*) to attach.
    """

    headers: dict[str, str] | None = None


class StoreUnavailableAppError(AppError):
    """Raised when the counter store cannot be reached and the policy fails closed."""
