"""
Wire format for the metrics RPC surface.

Every request and response is a single JSON-RPC 2.0 object. Params are
always passed by name. A ``MetricsError`` raised by a handler is turned into
an error object here. Failures that originate in the database are reported
as a bare ``-32603`` with a fixed message, so that paths, SQL and driver
messages stay in the server log.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from oc_metrics.errors import MetricsError

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ERROR_CODE_MAP: dict[str, int] = {
    "invalid_argument": INVALID_PARAMS,
    "not_found": METHOD_NOT_FOUND,
}

_STORAGE_FAILURE = "internal storage error"

# error_code -> the only message a caller sees
OPAQUE_ERROR_MESSAGES: dict[str, str] = {
    "storage": _STORAGE_FAILURE,
    "migration": _STORAGE_FAILURE,
    "consistency": _STORAGE_FAILURE,
    "encoding": _STORAGE_FAILURE,
    "internal": "internal error",
}


class JSONRPCError(Exception):
    """An error object, raised while decoding and sent back as ``error``."""

    def __init__(self, code: int, message: str, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        return body

    def __repr__(self) -> str:
        return f"JSONRPCError(code={self.code}, message={self.message!r}, data={self.data!r})"


@dataclass
class JSONRPCRequest:
    """A decoded call. ``id`` is None for notifications."""

    jsonrpc: str
    id: str | int | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        return self.id is None


@dataclass
class JSONRPCResponse:
    """Reply to one call; exactly one of ``result`` and ``error`` is sent."""

    jsonrpc: str
    id: str | int | None
    result: Any | None = None
    error: JSONRPCError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"jsonrpc": self.jsonrpc, "id": self.id, "error": self.error.to_dict()}
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": self.result}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def _bad_request(reason: str) -> JSONRPCError:
    return JSONRPCError(code=INVALID_REQUEST, message=f"Invalid Request: {reason}")


def parse_request(request_json: str) -> JSONRPCRequest:
    """
    Decode one request line.

    Raises:
        JSONRPCError: ``-32700`` for text that is not JSON, ``-32600`` for an
            object that is not a 2.0 call, ``-32602`` for positional params.

    Example:
        >>> parse_request('{"jsonrpc":"2.0","id":7,"method":"metrics.list"}').params
        {}
    """
    try:
        data = json.loads(request_json)
    except json.JSONDecodeError as e:
        raise JSONRPCError(code=PARSE_ERROR, message=f"Parse error: {e.msg}") from e

    if not isinstance(data, dict):
        raise _bad_request("expected a JSON object")

    version = data.get("jsonrpc")
    if version != JSONRPC_VERSION:
        raise _bad_request(f"unsupported jsonrpc version {version!r}")

    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise _bad_request("'method' must be a non-empty string")

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise JSONRPCError(
            code=INVALID_PARAMS,
            message="Invalid params: metrics methods take named params",
        )

    return JSONRPCRequest(
        jsonrpc=JSONRPC_VERSION,
        id=data.get("id"),
        method=method,
        params=params,
    )


def format_success_response(request_id: str | int | None, result: Any) -> JSONRPCResponse:
    return JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, result=result)


def format_error_response(
    request_id: str | int | None, error: JSONRPCError
) -> JSONRPCResponse:
    return JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, error=error)


def metrics_error_to_jsonrpc_error(error: MetricsError) -> JSONRPCError:
    """
    Map a handler failure onto an error object.

    Database and internal failures lose their message and details; caller
    mistakes keep both under ``data``.

    Example:
        >>> from oc_metrics.errors import StorageError
        >>> metrics_error_to_jsonrpc_error(StorageError("database is locked")).message
        'internal storage error'
    """
    opaque_message = OPAQUE_ERROR_MESSAGES.get(error.error_code)
    if opaque_message is not None:
        return create_internal_error(opaque_message)

    return JSONRPCError(
        code=ERROR_CODE_MAP.get(error.error_code, INTERNAL_ERROR),
        message=error.message,
        data={
            "error_code": error.error_code,
            "message": error.message,
            "details": error.details,
        },
    )


def create_internal_error(message: str = "internal error") -> JSONRPCError:
    """Build a ``-32603`` error that carries nothing beyond ``message``."""
    return JSONRPCError(
        code=INTERNAL_ERROR,
        message=message,
        data={"error_code": "internal", "message": message},
    )
