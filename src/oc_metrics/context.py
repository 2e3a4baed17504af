"""
Request context for the metrics service.

A RequestContext carries the metadata of a single JSON-RPC call: the method
invoked, its request ID, when it was received and where it came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from oc_metrics.protocol import JSONRPCRequest


@dataclass
class RequestContext:
    """
    Encapsulates the context of a single RPC call.

    Attributes:
        method: Full method name (e.g., "metrics.record").
        request_id: Request identifier from the JSON-RPC request.
        timestamp: When the request was received (UTC).
        peer: Remote address of the client, if known.
        metadata: Additional context for logging.
    """

    method: str
    request_id: str | int | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    peer: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert RequestContext to a dictionary for logging.

        Returns:
            Dictionary with context information.
        """
        return {
            "method": self.method,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "peer": self.peer,
            "metadata": self.metadata,
        }

    @classmethod
    def from_request(
        cls,
        request: JSONRPCRequest,
        peer: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RequestContext:
        """
        Create a RequestContext from a parsed JSON-RPC request.

        Args:
            request: The parsed JSONRPCRequest.
            peer: Optional remote address.
            metadata: Optional additional metadata.

        Returns:
            A RequestContext instance for the request.
        """
        return cls(
            method=request.method,
            request_id=request.id,
            timestamp=datetime.now(UTC),
            peer=peer,
            metadata=metadata or {},
        )
