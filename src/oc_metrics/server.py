"""
JSON-RPC server for the metrics service.

Requests are line-delimited JSON-RPC 2.0 objects, served either over TCP
(one asyncio task per connection) or over stdin/stdout. ``main`` is the
``oc-metrics`` console entry point: it loads configuration, opens and migrates
the database, then serves until stopped.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from typing import TextIO

import pydantic
import yaml

from oc_metrics.config import AppConfig, load_config
from oc_metrics.context import RequestContext
from oc_metrics.errors import MetricsError
from oc_metrics.logging import get_logger, setup_logging
from oc_metrics.protocol import (
    JSONRPCError,
    create_internal_error,
    format_error_response,
    format_success_response,
    metrics_error_to_jsonrpc_error,
    parse_request,
)
from oc_metrics.routing import MethodRegistry
from oc_metrics.service import MetricsService
from oc_metrics.storage.sqlite import SqliteDatabase

logger = get_logger(__name__)

# Upper bound on a single request line
MAX_LINE_BYTES = 16 * 1024 * 1024


async def process_request(
    request_json: str,
    registry: MethodRegistry,
    peer: str | None = None,
) -> str | None:
    """
    Process a single JSON-RPC request and return the response.

    Args:
        request_json: Raw JSON string containing the request.
        registry: MethodRegistry with registered handlers.
        peer: Optional remote address, for logging.

    Returns:
        JSON string containing the response, or None for notifications.
    """
    request_id: str | int | None = None
    method: str | None = None

    try:
        request = parse_request(request_json)
        request_id = request.id
        method = request.method

        ctx = RequestContext.from_request(request, peer=peer)
        result = await registry.invoke(request.method, ctx, request.params)

        if request.is_notification:
            return None
        return format_success_response(request_id, result).to_json()

    except JSONRPCError as e:
        return format_error_response(request_id, e).to_json()

    except MetricsError as e:
        # the cause stays in the log; callers get the mapped error only
        logger.warning(
            "Error handling request",
            extra={"request_id": request_id, "method": method, "error": e.to_dict()},
            exc_info=e.error_code not in ("invalid_argument", "not_found"),
        )
        if request_id is None and method is not None:
            return None
        return format_error_response(request_id, metrics_error_to_jsonrpc_error(e)).to_json()

    except Exception as e:
        logger.exception(
            "Unexpected error processing request",
            extra={"request_id": request_id, "method": method, "error": str(e)},
        )
        if request_id is None and method is not None:
            return None
        return format_error_response(request_id, create_internal_error()).to_json()


class MetricsServer:
    """
    Line-delimited JSON-RPC server.

    Attributes:
        registry: MethodRegistry with registered handlers.
        running: Whether the server is currently running.
    """

    def __init__(
        self,
        registry: MethodRegistry,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        """
        Initialize the server.

        Args:
            registry: MethodRegistry with registered handlers.
            stdin: Optional stdin stream for the stdio transport.
            stdout: Optional stdout stream for the stdio transport.
        """
        self.registry = registry
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self.running = False
        self._server: asyncio.AbstractServer | None = None
        self._connections: set[asyncio.StreamWriter] = set()
        self._stdin_transport: asyncio.ReadTransport | None = None

    async def handle_request(self, request_json: str, peer: str | None = None) -> str | None:
        """Handle a single JSON-RPC request."""
        return await process_request(request_json, self.registry, peer)

    # =========================================================================
    # TCP transport
    # =========================================================================

    async def start(self, host: str, port: int) -> None:
        """
        Listen on ``host:port`` and serve until ``stop()`` is called.
        """
        self._server = await asyncio.start_server(
            self._handle_connection,
            host=host,
            port=port,
            limit=MAX_LINE_BYTES,
        )
        self.running = True
        logger.info(
            "Metrics server listening",
            extra={
                "listen": f"{host}:{port}",
                "methods": self.registry.list_methods(),
            },
        )

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            self.running = False
            logger.info("Metrics server stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = str(writer.get_extra_info("peername") or "unknown")
        self._connections.add(writer)
        logger.debug("Client connected", extra={"peer": peer})

        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    # line longer than MAX_LINE_BYTES
                    error = JSONRPCError(code=-32600, message="Invalid Request: request too large")
                    await self._send(writer, format_error_response(None, error).to_json())
                    break
                if not line:
                    break

                try:
                    request_json = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.warning(
                        "Invalid UTF-8 encoding in request",
                        extra={"peer": peer, "error": str(e)},
                    )
                    error = JSONRPCError(
                        code=-32700, message="Parse error: UTF-8 required"
                    )
                    await self._send(writer, format_error_response(None, error).to_json())
                    continue

                if not request_json:
                    continue

                response = await self.handle_request(request_json, peer)
                if response:
                    await self._send(writer, response)

        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug("Connection closed", extra={"peer": peer, "error": str(e)})

        finally:
            self._connections.discard(writer)
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()
            logger.debug("Client disconnected", extra={"peer": peer})

    @staticmethod
    async def _send(writer: asyncio.StreamWriter, response_json: str) -> None:
        writer.write(response_json.encode("utf-8") + b"\n")
        await writer.drain()

    # =========================================================================
    # stdio transport
    # =========================================================================

    async def run_stdio(self) -> None:
        """
        Serve requests read line by line from stdin until EOF or ``stop()``.
        """
        self.running = True
        logger.info("Metrics server starting on stdio")

        try:
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
            protocol = asyncio.StreamReaderProtocol(reader)
            self._stdin_transport, _ = await loop.connect_read_pipe(
                lambda: protocol, self._stdin
            )

            while self.running:
                line = await reader.readline()
                if not line:
                    break

                try:
                    request_json = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.warning(
                        "Invalid UTF-8 encoding in request",
                        extra={"error": str(e)},
                    )
                    error = JSONRPCError(
                        code=-32700, message="Parse error: UTF-8 required"
                    )
                    self._write_response(format_error_response(None, error).to_json())
                    continue

                if not request_json:
                    continue

                response = await self.handle_request(request_json, "stdio")
                if response:
                    self._write_response(response)

        finally:
            self.running = False
            if self._stdin_transport is not None:
                self._stdin_transport.close()
                self._stdin_transport = None
            logger.info("Metrics server stopped")

    def _write_response(self, response_json: str) -> None:
        self._stdout.write(response_json + "\n")
        self._stdout.flush()

    async def stop(self) -> None:
        """Stop the server and close open client connections."""
        self.running = False

        for writer in list(self._connections):
            writer.close()
        self._connections.clear()

        if self._stdin_transport is not None:
            # closing the pipe feeds EOF to the pending readline
            self._stdin_transport.close()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None


def create_server(database: SqliteDatabase, config: AppConfig | None = None) -> MetricsServer:
    """
    Build a server whose registry exposes the metrics methods on ``database``.

    The database must already be set up.
    """
    config = config or AppConfig()
    service = MetricsService(
        database,
        default_max_results=config.service.default_max_results,
    )
    registry = MethodRegistry()
    service.register_handlers(registry)
    return MetricsServer(registry)


async def serve(config: AppConfig) -> None:
    """
    Open and migrate the database, then serve until a shutdown signal.

    Raises:
        MetricsError: If the database cannot be opened or migrated.
    """
    database = SqliteDatabase.open(config.storage.database_path)
    try:
        database.setup()
        server = create_server(database, config)

        loop = asyncio.get_running_loop()
        stop_tasks: set[asyncio.Task[None]] = set()

        def signal_handler() -> None:
            logger.info("Received shutdown signal")
            task = loop.create_task(server.stop())
            stop_tasks.add(task)
            task.add_done_callback(stop_tasks.discard)

        for sig in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(ValueError, NotImplementedError):
                loop.add_signal_handler(sig, signal_handler)

        if config.server.transport == "stdio":
            await server.run_stdio()
        else:
            host, port = config.server.listen_address()
            await server.start(host, port)
    finally:
        database.close()


def main(argv: list[str] | None = None) -> int:
    """Console entry point for ``oc-metrics``."""
    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, yaml.YAMLError, pydantic.ValidationError) as e:
        setup_logging(log_to_stdout=False)
        logger.critical("Invalid configuration", extra={"error": str(e)})
        return 1

    if config.server.transport == "stdio":
        # stdout carries the responses
        config.logging.log_to_stdout = False
    setup_logging(config.logging)

    try:
        asyncio.run(serve(config))
    except MetricsError as e:
        logger.critical("Metrics service failed to start", extra={"error": e.to_dict()})
        return 1
    except OSError as e:
        # e.g. the listen address is already in use
        logger.critical("Metrics service failed to start", extra={"error": str(e)})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
