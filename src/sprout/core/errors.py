"""
Structured error types for sprout.

Every failure the engine can report is a value of a typed error rather than
a bare exception, so callers can tell a bad configuration apart from a
flaky weather API or a broken migration chain.

Manifesto:
    - **Typed Error Hierarchy:** One branch per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the resource they concern
    - **Error Chaining:** Original exceptions are kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                         SproutError                             │
        │         (category, retryable, context, cause)                   │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ConfigError          ValidationError      ScheduleError        │
        │  (CONFIG)             (VALIDATION)         (SCHEDULING)         │
        │       │                                         │               │
        │  InvalidConfigError                        LightDelayError      │
        │                                                                 │
        │  TransientError                            MigrationError       │
        │  (retryable=True)                          (MIGRATION)          │
        │       │                                         │               │
        │  DispatchError                             MigrationNotFound    │
        │  WeatherDataError                          InvalidFromType      │
        │                                            InvalidToType        │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = WeatherDataError("rain lookup failed").with_context(client_id="abc")
    >>> err.retryable
    True
    >>> err.context.client_id
    'abc'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and log routing."""

    # Configuration (never retryable)
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"

    # Scheduling boundaries
    SCHEDULING = "SCHEDULING"

    # Infrastructure (usually transient)
    NETWORK = "NETWORK"
    WEATHER = "WEATHER"

    # Record evolution
    MIGRATION = "MIGRATION"

    # Internal
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        resource_id: Garden, zone or water schedule the error concerns
        resource_type: ``garden``, ``zone``, ``water_schedule`` ...
        job_tag: Scheduler tag involved, when different from resource_id
        client_id: Weather client involved in a weather failure
        metadata: Additional key-value pairs
    """

    resource_id: str | None = None
    resource_type: str | None = None
    job_tag: str | None = None
    client_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["resource_id", "resource_type", "job_tag", "client_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SproutError(Exception):
    """
    Base exception for all sprout errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SproutError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ScheduleError("no light schedule").with_context(
                resource_id=garden.id, resource_type="garden"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION AND VALIDATION ERRORS
# =============================================================================


class ConfigError(SproutError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None, **kwargs: Any):
        self.key = key
        self.value = value
        super().__init__(message or f"invalid configuration for {key}: {value!r}", **kwargs)


class ValidationError(SproutError):
    """
    Record validation error (bad duration, malformed start time, ...).

    Never retryable - the record must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# SCHEDULING ERRORS
# =============================================================================


class ScheduleError(SproutError):
    """A request could not be turned into scheduler state."""

    default_category = ErrorCategory.SCHEDULING
    default_retryable = False


class LightDelayError(ScheduleError):
    """A light delay request violated one of its preconditions.

    Raised before any timer is touched.
    """


# =============================================================================
# TRANSIENT ERRORS
# =============================================================================


class TransientError(SproutError):
    """Temporary error that may succeed on a later fire."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class DispatchError(TransientError):
    """Publishing an action to a controller failed."""

    default_category = ErrorCategory.NETWORK


class WeatherDataError(TransientError):
    """Fetching data from a weather client failed."""

    default_category = ErrorCategory.WEATHER


# =============================================================================
# MIGRATION ERRORS
# =============================================================================


UNKNOWN_MIGRATION = "Unknown"


class MigrationError(SproutError):
    """
    A migration step failed for one record.

    Carries the migration name and the version the record was at when the
    step was attempted. The rendered message has the form
    ``error running migration "<name>"/<version>: <reason>``.
    """

    default_category = ErrorCategory.MIGRATION
    default_retryable = False
    reason = "migration failed"

    def __init__(
        self,
        name: str,
        version: int,
        reason: str | None = None,
        **kwargs: Any,
    ):
        self.name = name
        self.version = version
        cause = kwargs.get("cause")
        if reason is None:
            reason = str(cause) if cause is not None else self.reason
        self.reason = reason
        super().__init__(f'error running migration "{name}"/{version}: {reason}', **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["migration"] = self.name
        result["version"] = self.version
        return result


class MigrationNotFoundError(MigrationError):
    """No migration is registered for the record's current version."""

    default_category = ErrorCategory.CONFIG
    reason = "migration not found"

    def __init__(self, version: int, name: str = UNKNOWN_MIGRATION, **kwargs: Any):
        super().__init__(name, version, **kwargs)


class InvalidFromTypeError(MigrationError):
    """The record handed to a migration is not the type it expects."""

    default_category = ErrorCategory.CONFIG
    reason = "unexpected From type"


class InvalidToTypeError(MigrationError):
    """A migration returned something other than its declared output type."""

    default_category = ErrorCategory.CONFIG
    reason = "unexpected To type"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SproutError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SproutError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SproutError",
    # Configuration
    "ConfigError",
    "InvalidConfigError",
    "ValidationError",
    # Scheduling
    "ScheduleError",
    "LightDelayError",
    # Transient
    "TransientError",
    "DispatchError",
    "WeatherDataError",
    # Migration
    "UNKNOWN_MIGRATION",
    "MigrationError",
    "MigrationNotFoundError",
    "InvalidFromTypeError",
    "InvalidToTypeError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
