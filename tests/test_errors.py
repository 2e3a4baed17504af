"""
Tests for the errors module.

This test module validates:
- MetricsError base class functionality
- Error subclasses and their error codes
- Error serialization (to_dict)
"""

from __future__ import annotations

import pytest

from oc_metrics.errors import (
    ConsistencyError,
    EncodingError,
    InternalError,
    MetricsError,
    MigrationError,
    StorageError,
    ValidationError,
)

# =============================================================================
# Tests for MetricsError Base Class
# =============================================================================


class TestMetricsError:
    """Tests for MetricsError base class."""

    def test_init_with_all_args(self) -> None:
        """Test initialization with all arguments."""
        error = MetricsError(
            error_code="storage",
            message="problem interacting with database",
            details={"operation": "write_metric"},
        )

        assert error.error_code == "storage"
        assert error.message == "problem interacting with database"
        assert error.details == {"operation": "write_metric"}
        assert str(error) == "problem interacting with database"

    def test_details_default_empty(self) -> None:
        """Test that details default to an empty dict."""
        assert MetricsError(error_code="x", message="m").details == {}

    def test_repr_representation(self) -> None:
        """Test repr includes every field."""
        error = StorageError("locked", details={"path": "a.db"})
        assert repr(error) == (
            "StorageError(error_code='storage', message='locked', "
            "details={'path': 'a.db'})"
        )

    def test_to_dict(self) -> None:
        """Test conversion to a dictionary."""
        error = ValidationError("bad", details={"index": 2})
        assert error.to_dict() == {
            "error_code": "invalid_argument",
            "message": "bad",
            "details": {"index": 2},
        }


# =============================================================================
# Tests for Error Subclasses
# =============================================================================


class TestErrorSubclasses:
    """Tests for the MetricsError subclasses."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (MigrationError("m"), "migration"),
            (ConsistencyError("m"), "consistency"),
            (EncodingError("m"), "encoding"),
            (StorageError("m"), "storage"),
            (ValidationError("m"), "invalid_argument"),
            (InternalError("m"), "internal"),
        ],
    )
    def test_error_code(self, error: MetricsError, code: str) -> None:
        """Test each subclass carries its error code."""
        assert error.error_code == code
        assert isinstance(error, MetricsError)

    def test_migration_hierarchy(self) -> None:
        """Test that consistency and encoding errors are migration errors."""
        with pytest.raises(MigrationError):
            raise ConsistencyError("expected 'a', found 'b'")
        with pytest.raises(MigrationError):
            raise EncodingError("not UTF-8")

    def test_error_chain(self) -> None:
        """Test that the cause is preserved when chaining."""
        try:
            try:
                raise OSError("disk full")
            except OSError as e:
                raise StorageError("write failed") from e
        except StorageError as e:
            assert isinstance(e.__cause__, OSError)
