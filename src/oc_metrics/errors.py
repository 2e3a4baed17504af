"""
Error types for the metrics service.

This module defines the MetricsError base class and the subclasses used by the
migration engine, the storage backend and the service layer. Errors are raised
as MetricsError (or a subclass) and mapped to JSON-RPC errors at the protocol
layer; storage failures are reported to callers only as a generic
"internal storage error".
"""

from __future__ import annotations

from typing import Any


class MetricsError(Exception):
    """
    Base exception class for metrics service errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "storage", "consistency", "encoding", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., migration names).

    Example:
        >>> raise MetricsError(
        ...     error_code="storage",
        ...     message="problem interacting with database",
        ...     details={"operation": "write_metric"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a MetricsError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class MigrationError(MetricsError):
    """
    Error raised when the schema migrations cannot be applied.

    Subclasses distinguish a diverging history (ConsistencyError) from
    unreadable migration content (EncodingError).
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        error_code: str = "migration",
    ) -> None:
        """Initialize a MigrationError."""
        super().__init__(error_code=error_code, message=message, details=details)


class ConsistencyError(MigrationError):
    """
    Error raised when the applied migration history diverges from the
    available migration files.

    This is fatal: nothing is repaired or skipped, an operator must fix
    the database or the migration set.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ConsistencyError."""
        super().__init__(message, details, error_code="consistency")


class EncodingError(MigrationError):
    """Error raised when a migration file is not valid UTF-8 text."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an EncodingError."""
        super().__init__(message, details, error_code="encoding")


class StorageError(MetricsError):
    """
    Error raised for any backend I/O or lock failure.

    This includes SQLite errors, timestamps that cannot be parsed back from
    the store, and a poisoned connection.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a StorageError."""
        super().__init__(error_code="storage", message=message, details=details)


class ValidationError(MetricsError):
    """
    Error raised for malformed caller input.

    This error maps to the "invalid_argument" error code, e.g. a metric
    entry that carries neither a double nor a string value.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a ValidationError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class InternalError(MetricsError):
    """
    Error raised for unexpected internal errors.

    Handlers that fail with anything other than a MetricsError are wrapped
    in this error by the method registry.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
