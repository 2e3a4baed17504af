"""
Method routing for the metrics service.

MethodRegistry maps JSON-RPC method names to async handler functions and
wraps unexpected handler failures in InternalError.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from oc_metrics.errors import InternalError, MetricsError

if TYPE_CHECKING:
    from oc_metrics.context import RequestContext

MethodHandler = Callable[["RequestContext", dict[str, Any]], Awaitable[Any]]


class MethodRegistry:
    """
    Registry for mapping method names to handler functions.

    Example:
        >>> registry = MethodRegistry()
        >>> registry.register("metrics.list", handle_list)
        >>> result = await registry.invoke("metrics.list", ctx, {"prefix": "svc."})
    """

    def __init__(self) -> None:
        """Initialize an empty method registry."""
        self._handlers: dict[str, MethodHandler] = {}

    def register(self, name: str, handler: MethodHandler) -> None:
        """
        Register a handler under ``name``.

        Raises:
            ValueError: If a handler is already registered for the name.
        """
        if name in self._handlers:
            raise ValueError(f"Method '{name}' is already registered")
        self._handlers[name] = handler

    def get_handler(self, name: str) -> MethodHandler | None:
        """Get the handler for a method by name, or None."""
        return self._handlers.get(name)

    def list_methods(self) -> list[str]:
        """List all registered method names."""
        return list(self._handlers.keys())

    async def invoke(
        self,
        name: str,
        ctx: RequestContext,
        params: dict[str, Any],
    ) -> Any:
        """
        Invoke a handler by name.

        Args:
            name: Method name to invoke.
            ctx: RequestContext for the request.
            params: Parameters to pass to the handler.

        Returns:
            The handler's return value.

        Raises:
            MetricsError: If the method is not found or the handler raises
                a MetricsError; any other exception is wrapped in
                InternalError.
        """
        handler = self.get_handler(name)
        if handler is None:
            raise MetricsError(
                error_code="not_found",
                message=f"Method '{name}' is not registered",
                details={"method": name},
            )

        try:
            return await handler(ctx, params)
        except MetricsError:
            raise
        except Exception as e:
            raise InternalError(
                message=f"Internal error in method '{name}': {e!s}",
                details={"method": name, "exception_type": type(e).__name__},
            ) from e

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
