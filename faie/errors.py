from __future__ import annotations


class FaieError(Exception):
    """Base class for pipeline errors."""


class ValidationError(FaieError):
    """Malformed or incomplete webhook payload. Surfaced as 400, never retried."""


class AuthError(FaieError):
    """Missing or bad credential/signature. Surfaced as 401, never retried."""


class EnrichmentFailure(FaieError):
    """The enrichment call for one record failed as a whole."""

    def __init__(self, feedback_id: int, message: str) -> None:
        super().__init__(f"feedback {feedback_id}: {message}")
        self.feedback_id = feedback_id
        self.message = message


class SinkFailure(FaieError):
    """Vector index or notification channel rejected a write."""
