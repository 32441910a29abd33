"""
Error types shared across layers.

Business failures (executor rejections, step validation) are never raised
past the dialogue layer; these types cover the model layer and reference
lookups.
"""


class ModelNotConfiguredError(RuntimeError):
    """No API key / provider configuration for a hosted model."""


class ModelUnavailableError(RuntimeError):
    """Every configured model tier failed (transport, timeout or malformed output)."""

    def __init__(self, message: str, attempts: list[dict] | None = None):
        super().__init__(message)
        self.attempts = attempts or []


class ReferenceDataUnavailableError(RuntimeError):
    """Reference data needed for a dependency check could not be loaded."""
