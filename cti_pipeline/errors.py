"""
Error taxonomy for the CTI correlation pipeline.

Only ConfigurationError is allowed to stop a run. Every other error is caught
at the boundary of the component that raised it and resolved by dropping the
source, retrying, or deriving a fallback result.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PipelineError):
    """No usable source of truth is configured at all."""


class CollectorError(PipelineError):
    """A collector failed (authentication, rate limit, network)."""

    def __init__(self, source: str, message: str, status_code: int = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class ReasoningServiceError(PipelineError):
    """The reasoning service timed out, returned non-200 or an empty body."""


class ResponseParseError(PipelineError):
    """A reasoning-service response did not match the expected shape."""


class TranslationError(PipelineError):
    """A translation provider failed to return a usable translation."""
