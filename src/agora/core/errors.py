"""
Error taxonomy for the orchestration pipeline.

Only ValidationError is meant to reach the orchestration caller. Everything
else is absorbed at the nearest component boundary and turned into a static
fallback value.
"""

from typing import Any, Dict, Optional


class AgoraError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AgoraError):
    """Malformed or missing required input. Never retried."""


class TransientProviderError(AgoraError):
    """Timeout or failure from an external provider. Retryable."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.provider = provider
        self.model = model


class DegradedModeError(AgoraError):
    """A path is unavailable and the caller must use its static fallback."""


class ModelChainExhausted(DegradedModeError):
    """Every model in the fallback chain failed or returned empty content."""

    def __init__(self, models: list, attempts: int):
        super().__init__(
            f"All {len(models)} models failed after {attempts} attempts",
            {"models": list(models), "attempts": attempts}
        )
        self.models = list(models)
        self.attempts = attempts


class PersistenceError(AgoraError):
    """Failure writing results. Logged, never unwinds a computed response."""
