"""
Exception hierarchy for data source and pipeline failures.

Every error raised from an adapter carries the id of the source that raised it
and a category, so callers can decide whether to retry without parsing
messages. A provider "not found" is never an exception: lookups return None.
"""
from typing import Any


class DataSourceError(Exception):
    """Base exception for errors raised by a data source."""

    category = "provider"
    retryable = False

    def __init__(
        self,
        source_id: str,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(f"[{source_id}] {message}")
        self.source_id = source_id
        self.message = message
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_id,
            "category": self.category,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }


class AuthenticationError(DataSourceError):
    """Raised when a provider rejects credentials or the token exchange fails."""

    category = "authentication"


class RateLimitedError(DataSourceError):
    """Raised when a provider is still rate limiting after one retry."""

    category = "rate_limit"
    retryable = True

    def __init__(self, source_id: str, message: str, *, retry_after: float | None = None, **kwargs):
        super().__init__(source_id, message, **kwargs)
        self.retry_after = retry_after


class TransientNetworkError(DataSourceError):
    """Raised on timeouts and connection failures that survived one retry."""

    category = "network"
    retryable = True


class ProviderError(DataSourceError):
    """Raised for unexpected provider responses (5xx, malformed payloads)."""

    category = "provider"


class ConfigurationError(Exception):
    """Raised when a source cannot be constructed from its configuration."""

    def __init__(self, source_id: str, message: str):
        super().__init__(f"[{source_id}] {message}")
        self.source_id = source_id
        self.message = message


class NoSourceAvailableError(Exception):
    """Raised when an operation needs a source and none is registered."""

    def __init__(self, message: str = "No data source available"):
        super().__init__(message)


class SourceNotFoundError(Exception):
    """Raised when a caller names a source id that is not registered."""

    def __init__(self, source_id: str):
        super().__init__(f"Data source '{source_id}' not found")
        self.source_id = source_id


class SourceCapabilityError(Exception):
    """Raised when a source does not support the requested operation."""

    def __init__(self, source_id: str, operation: str):
        super().__init__(f"Data source '{source_id}' does not support {operation}")
        self.source_id = source_id
        self.operation = operation


class ValidationFailedError(Exception):
    """Raised when a record fails one or more validation rules."""

    def __init__(self, errors: list[str]):
        super().__init__(f"Validation failed: {'; '.join(errors)}")
        self.errors = errors


class TransformationError(Exception):
    """Raised when a named transformation fails on a record."""

    def __init__(self, name: str, cause: Exception):
        super().__init__(f"Error applying transformation '{name}': {cause}")
        self.name = name
        self.cause = cause
