"""Custom exception hierarchy for the story deduplication engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from storydedup.core.models import DedupResult


class StoryDedupError(Exception):
    """Root exception for all project-specific errors.

    Args:
        message: Human-readable error description.
        details: Optional dict with structured error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message


class ConfigError(StoryDedupError):
    """Configuration loading or validation error."""


class APIError(StoryDedupError):
    """Generic external API error."""


class ClaudeAPIError(APIError):
    """Non-retryable Claude API error (bad request, auth, missing key)."""


class TransientError(APIError):
    """Network, timeout or server-side failure that may succeed on retry."""


class RateLimitError(TransientError):
    """API rate limit exceeded."""


class GroupingValidationError(StoryDedupError):
    """A semantic grouping response (or one of its groups) failed validation."""


class GroupingResponseError(GroupingValidationError):
    """The semantic grouping response could not be parsed at all."""


class PersistenceError(StoryDedupError):
    """Database write or read failure.

    When raised at the end of a detection run, ``result`` holds the
    in-memory outcome so callers can still use the unique posts.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        result: DedupResult | None = None,
    ) -> None:
        super().__init__(message, details)
        self.result = result


class WorkflowError(StoryDedupError):
    """A critical workflow step failed."""
