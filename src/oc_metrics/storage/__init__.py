"""
Metrics storage for the metrics service.

This package defines the Metric data model and the Database capability used by
the service layer. The SQLite implementation lives in
``oc_metrics.storage.sqlite`` and its schema migrations in
``oc_metrics/storage/migrations``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

# Value type discriminators stored in Metrics.value_type
VALUE_TYPE_DOUBLE = "double"
VALUE_TYPE_STRING = "string"

MetricValue = float | str


def to_utc(when: datetime) -> datetime:
    """
    Return ``when`` as an aware UTC datetime; naive values are taken as UTC.

    Raises:
        ValueError: If the instant falls outside the datetime range in UTC.
    """
    if when.tzinfo is None:
        return when.replace(tzinfo=UTC)
    try:
        return when.astimezone(UTC)
    except OverflowError as e:
        raise ValueError(f"timestamp out of range: {when.isoformat()}") from e


def format_timestamp(when: datetime) -> str:
    """
    Serialize a timestamp to its stored text form.

    The form is fixed-width ISO 8601 in UTC with microseconds, e.g.
    ``2018-01-26T18:30:09.453829+00:00``, so text order equals time order.
    """
    return to_utc(when).isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    """Parse a stored timestamp back to an aware UTC datetime."""
    return to_utc(datetime.fromisoformat(text))


@dataclass(frozen=True)
class Metric:
    """A single named, timestamped data point.

    Attributes:
        name: Dot-separated metric name (e.g., 'svc.cpu').
        when: When the value was observed (UTC).
        value: float for the double variant, str for the string variant.
    """

    name: str
    when: datetime
    value: MetricValue

    @property
    def value_type(self) -> str:
        """The stored discriminator for this metric's value."""
        if isinstance(self.value, str):
            return VALUE_TYPE_STRING
        return VALUE_TYPE_DOUBLE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "when": to_utc(self.when).isoformat(),
            "value_type": self.value_type,
            "value": self.value,
        }


class Database(ABC):
    """Storage capability consumed by the service layer."""

    @abstractmethod
    def setup(self) -> list[str]:
        """
        Bring the schema up to date.

        Returns:
            Names of the migrations applied by this call.
        """

    @abstractmethod
    def write_metric(self, metric: Metric) -> None:
        """Insert one metric row."""

    @abstractmethod
    def read_metrics(
        self,
        prefix: str,
        start: datetime | None = None,
        stop: datetime | None = None,
        limit: int | None = None,
    ) -> list[Metric]:
        """
        Read metrics whose name starts with ``prefix``.

        Args:
            prefix: Name prefix to match.
            start: Only return metrics strictly after this time.
            stop: Only return metrics strictly before this time.
            limit: Maximum number of metrics to return.
        """

    @abstractmethod
    def list_metrics(self, prefix: str) -> list[tuple[str, datetime]]:
        """Return each distinct name matching ``prefix`` with its latest timestamp."""


__all__ = [
    "VALUE_TYPE_DOUBLE",
    "VALUE_TYPE_STRING",
    "Database",
    "Metric",
    "MetricValue",
    "format_timestamp",
    "parse_timestamp",
    "to_utc",
]
