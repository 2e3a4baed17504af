"""
Request and response messages for the metrics RPC surface.

Timestamps are accepted as ISO 8601 strings, Unix seconds, or
``{"seconds": ..., "nanos": ...}`` objects, and are always returned as
ISO 8601 strings in UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from oc_metrics.errors import ValidationError
from oc_metrics.storage import Metric, MetricValue, to_utc

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# max_results is a uint32 on the wire
MAX_RESULTS_LIMIT = 2**32 - 1


def coerce_timestamp(value: Any) -> Any:
    """
    Convert a ``{"seconds", "nanos"}`` object to a datetime.

    Other values are left for pydantic's own datetime parsing.
    """
    if isinstance(value, dict):
        try:
            seconds = int(value.get("seconds", 0))
            nanos = int(value.get("nanos", 0))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid timestamp object: {value!r}") from e
        if not 0 <= nanos < 1_000_000_000:
            raise ValueError(f"nanos must be in [0, 1e9), got {nanos}")
        try:
            return _EPOCH + timedelta(seconds=seconds, microseconds=nanos // 1000)
        except OverflowError as e:
            raise ValueError(f"timestamp out of range: {seconds} seconds") from e
    return value


def normalize_timestamp(value: datetime | None) -> datetime | None:
    """Convert a parsed timestamp to UTC, rejecting instants UTC cannot hold."""
    if value is None:
        return None
    return to_utc(value)


def check_text(value: str | None) -> str | None:
    """Reject strings that cannot be encoded as UTF-8 (lone surrogates)."""
    if value is not None:
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"text is not valid UTF-8 at position {e.start}") from e
    return value


class _Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# RecordMetrics
# =============================================================================


class MetricEntry(_Message):
    """One metric in a record request.

    At most one of ``double_value`` / ``string_value`` may be set. An entry
    with neither is accepted here and rejected when the batch is written.
    """

    identifier: str
    when: datetime | None = None
    double_value: float | None = None
    string_value: str | None = None

    @model_validator(mode="before")
    @classmethod
    def expand_value(cls, data: Any) -> Any:
        """Expand the ``value`` shorthand into the typed value fields."""
        if isinstance(data, dict) and "value" in data:
            data = dict(data)
            value = data.pop("value")
            if isinstance(value, str):
                data.setdefault("string_value", value)
            elif value is not None:
                data.setdefault("double_value", value)
        return data

    @model_validator(mode="after")
    def check_single_value(self) -> MetricEntry:
        if self.double_value is not None and self.string_value is not None:
            raise ValueError("a metric carries either double_value or string_value, not both")
        return self

    @field_validator("when", mode="before")
    @classmethod
    def parse_when(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @field_validator("when")
    @classmethod
    def normalize_when(cls, v: datetime | None) -> datetime | None:
        return normalize_timestamp(v)

    @field_validator("identifier", "string_value")
    @classmethod
    def check_encodable(cls, v: str | None) -> str | None:
        return check_text(v)

    def metric_value(self) -> MetricValue | None:
        """Return the entry's value, or None when it carries none."""
        if self.string_value is not None:
            return self.string_value
        return self.double_value


class RecordMetricsRequest(_Message):
    metrics: list[MetricEntry] = Field(default_factory=list)


class RecordMetricsResponse(_Message):
    pass


# =============================================================================
# LoadMetrics
# =============================================================================


class TimeRange(_Message):
    """Exclusive time bounds; either side may be omitted."""

    start: datetime | None = None
    stop: datetime | None = None

    @field_validator("start", "stop", mode="before")
    @classmethod
    def parse_bound(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @field_validator("start", "stop")
    @classmethod
    def normalize_bound(cls, v: datetime | None) -> datetime | None:
        return normalize_timestamp(v)


class LoadMetricsRequest(_Message):
    prefix: str = ""
    time_range: TimeRange | None = None
    max_results: int | None = Field(default=None, ge=0, le=MAX_RESULTS_LIMIT)

    @field_validator("prefix")
    @classmethod
    def check_prefix(cls, v: str) -> str:
        return check_text(v)


class Point(_Message):
    when: datetime
    double_value: float | None = None
    string_value: str | None = None

    @classmethod
    def from_metric(cls, metric: Metric) -> Point:
        if isinstance(metric.value, str):
            return cls(when=to_utc(metric.when), string_value=metric.value)
        return cls(when=to_utc(metric.when), double_value=metric.value)


class MetricPoints(_Message):
    identifier: str
    points: list[Point] = Field(default_factory=list)


class LoadMetricsResponse(_Message):
    metrics: list[MetricPoints] = Field(default_factory=list)


# =============================================================================
# ListMetrics
# =============================================================================


class ListMetricsRequest(_Message):
    prefix: str = ""

    @field_validator("prefix")
    @classmethod
    def check_prefix(cls, v: str) -> str:
        return check_text(v)


class MetricSummary(_Message):
    identifier: str
    last_timestamp: datetime


class ListMetricsResponse(_Message):
    metrics: list[MetricSummary] = Field(default_factory=list)


def parse_message(model: type[_Message], params: dict[str, Any]) -> Any:
    """
    Validate request params against a message model.

    Raises:
        ValidationError: If the params do not match the model.
    """
    try:
        return model.model_validate(params)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            details={
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e
