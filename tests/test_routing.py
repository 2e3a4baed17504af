"""
Tests for the routing module (MethodRegistry).

This test module validates:
- Registration and lookup
- Dispatch and error wrapping
"""

from __future__ import annotations

from typing import Any

import pytest

from oc_metrics.context import RequestContext
from oc_metrics.errors import InternalError, MetricsError, ValidationError
from oc_metrics.routing import MethodRegistry


async def echo_handler(ctx: RequestContext, params: dict[str, Any]) -> dict[str, Any]:
    """A handler that echoes parameters."""
    return {"method": ctx.method, "echoed": params}


async def invalid_handler(_ctx: RequestContext, _params: dict[str, Any]) -> None:
    """A handler that raises a ValidationError."""
    raise ValidationError("bad input")


async def crashing_handler(_ctx: RequestContext, _params: dict[str, Any]) -> None:
    """A handler that raises an unexpected exception."""
    raise KeyError("missing")


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(method="test.echo", request_id="req-1")


class TestMethodRegistry:
    """Tests for MethodRegistry."""

    def test_register_and_lookup(self) -> None:
        """Test registering a handler."""
        registry = MethodRegistry()
        registry.register("test.echo", echo_handler)

        assert "test.echo" in registry
        assert len(registry) == 1
        assert registry.get_handler("test.echo") is echo_handler
        assert registry.get_handler("test.other") is None
        assert registry.list_methods() == ["test.echo"]

    def test_duplicate_registration(self) -> None:
        """Test that a name cannot be registered twice."""
        registry = MethodRegistry()
        registry.register("test.echo", echo_handler)

        with pytest.raises(ValueError):
            registry.register("test.echo", echo_handler)

    @pytest.mark.asyncio
    async def test_invoke(self, ctx: RequestContext) -> None:
        """Test dispatching to a handler."""
        registry = MethodRegistry()
        registry.register("test.echo", echo_handler)

        result = await registry.invoke("test.echo", ctx, {"a": 1})

        assert result == {"method": "test.echo", "echoed": {"a": 1}}

    @pytest.mark.asyncio
    async def test_invoke_unknown(self, ctx: RequestContext) -> None:
        """Test that an unknown method raises not_found."""
        with pytest.raises(MetricsError) as exc_info:
            await MethodRegistry().invoke("test.missing", ctx, {})
        assert exc_info.value.error_code == "not_found"

    @pytest.mark.asyncio
    async def test_metrics_error_passes_through(self, ctx: RequestContext) -> None:
        """Test that MetricsError subclasses are re-raised unchanged."""
        registry = MethodRegistry()
        registry.register("test.invalid", invalid_handler)

        with pytest.raises(ValidationError):
            await registry.invoke("test.invalid", ctx, {})

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, ctx: RequestContext) -> None:
        """Test that other exceptions become InternalError."""
        registry = MethodRegistry()
        registry.register("test.crash", crashing_handler)

        with pytest.raises(InternalError) as exc_info:
            await registry.invoke("test.crash", ctx, {})
        assert exc_info.value.details["exception_type"] == "KeyError"
