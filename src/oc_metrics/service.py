"""
Service layer for the metrics RPC surface.

This module implements the ``metrics.*`` methods:
- metrics.record (RecordMetrics): write a batch of metrics
- metrics.load (LoadMetrics): read metrics by prefix and time range, grouped by name
- metrics.list (ListMetrics): list metric names with their latest timestamp

Storage calls are blocking and run in the default executor; each call takes
the storage lock for one statement only, so a batch may interleave with
other requests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from oc_metrics.errors import ValidationError
from oc_metrics.logging import get_logger
from oc_metrics.messages import (
    ListMetricsRequest,
    ListMetricsResponse,
    LoadMetricsRequest,
    LoadMetricsResponse,
    MetricPoints,
    MetricSummary,
    Point,
    RecordMetricsRequest,
    RecordMetricsResponse,
    parse_message,
)
from oc_metrics.storage import Database, Metric

if TYPE_CHECKING:
    from oc_metrics.context import RequestContext
    from oc_metrics.routing import MethodRegistry

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RESULTS = 1000

# Method names and their aliases
RECORD_METHODS = ("metrics.record", "RecordMetrics")
LOAD_METHODS = ("metrics.load", "LoadMetrics")
LIST_METHODS = ("metrics.list", "ListMetrics")


def now_utc() -> datetime:
    return datetime.now(UTC)


class MetricsService:
    """
    Maps RPC requests onto a Database.

    Example:
        >>> service = MetricsService(db)
        >>> await service.record_metrics(
        ...     RecordMetricsRequest(metrics=[{"identifier": "svc.cpu", "value": 23.0}])
        ... )
        >>> response = await service.load_metrics(LoadMetricsRequest(prefix="svc."))
    """

    def __init__(
        self,
        database: Database,
        *,
        default_max_results: int = DEFAULT_MAX_RESULTS,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """
        Initialize the service.

        Args:
            database: Storage the service reads and writes.
            default_max_results: Cap used when a load request gives none.
            clock: Source of "now" for metrics recorded without a timestamp.
        """
        self.database = database
        self.default_max_results = default_max_results
        self._clock = clock

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def record_metrics(self, request: RecordMetricsRequest) -> RecordMetricsResponse:
        """
        Write every metric in the request, in order.

        Metrics without a timestamp all get the same "now", read once per
        request. Writing stops at the first failure; metrics written before
        it stay committed.

        Raises:
            ValidationError: If an entry carries no value.
            StorageError: If a write fails.
        """
        now = self._clock()
        for index, entry in enumerate(request.metrics):
            value = entry.metric_value()
            if value is None:
                raise ValidationError(
                    f"Metric '{entry.identifier}' has no value",
                    details={"index": index, "identifier": entry.identifier},
                )
            metric = Metric(
                name=entry.identifier,
                when=entry.when if entry.when is not None else now,
                value=value,
            )
            await self._run(self.database.write_metric, metric)

        logger.debug("Recorded metrics", extra={"count": len(request.metrics)})
        return RecordMetricsResponse()

    async def load_metrics(self, request: LoadMetricsRequest) -> LoadMetricsResponse:
        """
        Read metrics matching the request and group the points by name.

        Points keep the order storage returned them in.

        Raises:
            StorageError: If the read fails.
        """
        start = stop = None
        if request.time_range is not None:
            start = request.time_range.start
            stop = request.time_range.stop

        # 0 means unset, as for an omitted protobuf uint
        limit = request.max_results or self.default_max_results

        metrics = await self._run(
            self.database.read_metrics, request.prefix, start, stop, limit
        )

        groups: dict[str, list[Point]] = {}
        for metric in metrics:
            groups.setdefault(metric.name, []).append(Point.from_metric(metric))

        return LoadMetricsResponse(
            metrics=[
                MetricPoints(identifier=name, points=points)
                for name, points in groups.items()
            ]
        )

    async def list_metrics(self, request: ListMetricsRequest) -> ListMetricsResponse:
        """
        List each metric name matching the prefix with its latest timestamp.

        Raises:
            StorageError: If the read fails.
        """
        names = await self._run(self.database.list_metrics, request.prefix)
        return ListMetricsResponse(
            metrics=[
                MetricSummary(identifier=name, last_timestamp=last)
                for name, last in names
            ]
        )

    # =========================================================================
    # JSON-RPC handlers
    # =========================================================================

    async def handle_record(
        self, _ctx: RequestContext, params: dict[str, Any]
    ) -> dict[str, Any]:
        request = parse_message(RecordMetricsRequest, params)
        return (await self.record_metrics(request)).to_dict()

    async def handle_load(
        self, _ctx: RequestContext, params: dict[str, Any]
    ) -> dict[str, Any]:
        request = parse_message(LoadMetricsRequest, params)
        return (await self.load_metrics(request)).to_dict()

    async def handle_list(
        self, _ctx: RequestContext, params: dict[str, Any]
    ) -> dict[str, Any]:
        request = parse_message(ListMetricsRequest, params)
        return (await self.list_metrics(request)).to_dict()

    def register_handlers(self, registry: MethodRegistry) -> None:
        """Register the metrics methods and their aliases on ``registry``."""
        for names, handler in (
            (RECORD_METHODS, self.handle_record),
            (LOAD_METHODS, self.handle_load),
            (LIST_METHODS, self.handle_list),
        ):
            for name in names:
                registry.register(name, handler)
