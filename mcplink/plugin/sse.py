"""Server-Sent Events transport and plugin.

MCP over SSE uses two HTTP channels:
- A long-lived GET event stream for server -> client messages. Its first
  ``endpoint`` event names the URL that accepts client messages.
- POST requests to that endpoint for client -> server messages.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx

from mcplink.config.defaults import SSE_DEFAULT_HEADERS, get_default_plugin_config
from mcplink.config.schema import SSEPluginConfig
from mcplink.core.errors import ConnectionTimeoutError, MCPTransportError
from mcplink.core.types import TransportType
from mcplink.core.uri import HTTP_SCHEMES, has_scheme
from mcplink.mcp.sse import iter_sse_events
from mcplink.mcp.transport import InboundQueue, MCPTransport
from mcplink.plugin.base import (
    ERROR_NOT_FOUND,
    ERROR_TIMEOUT,
    ERROR_UNREACHABLE,
    PluginMetadata,
    TransportPlugin,
)

logger = logging.getLogger(__name__)


class SSETransport(MCPTransport):
    """Connect to a remote MCP server over an SSE stream.

    Attributes:
        url: Event stream URL (e.g., http://localhost:3006/sse).
        endpoint: POST URL announced by the server, None until connected.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        connection_timeout: float = 5.0,
        read_timeout: float = 30.0,
        keep_alive: bool = True,
    ):
        """Initialize SSETransport.

        Args:
            url: Event stream URL.
            headers: Additional HTTP headers (e.g., for auth).
            connection_timeout: Seconds to wait for the stream and its endpoint event.
            read_timeout: Seconds to wait for a POST response.
            keep_alive: Reuse HTTP connections between POSTs.
        """
        self._url = url
        self._headers = headers or {}
        self._connection_timeout = connection_timeout
        self._read_timeout = read_timeout
        self._keep_alive = keep_alive
        self._client: httpx.AsyncClient | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._endpoint_ready: asyncio.Future[str] | None = None
        self._endpoint: str | None = None
        self._inbound = InboundQueue()

    @property
    def url(self) -> str:
        return self._url

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    async def connect(self) -> None:
        """Open the event stream and wait for the endpoint event.

        Raises:
            ConnectionTimeoutError: If no endpoint arrives within connection_timeout.
            MCPTransportError: If the stream cannot be opened.
        """
        if self.is_connected:
            return

        limits = httpx.Limits() if self._keep_alive else httpx.Limits(max_keepalive_connections=0)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._read_timeout, connect=self._connection_timeout),
            follow_redirects=False,
            headers=self._headers,
            limits=limits,
        )
        self._inbound = InboundQueue()
        self._endpoint_ready = asyncio.get_running_loop().create_future()
        self._reader_task = asyncio.create_task(self._read_stream())

        try:
            self._endpoint = await asyncio.wait_for(
                asyncio.shield(self._endpoint_ready), timeout=self._connection_timeout
            )
        except TimeoutError:
            await self.close()
            raise ConnectionTimeoutError(
                f"SSE connection timeout: no endpoint event after {self._connection_timeout}s"
            ) from None
        except BaseException:
            await self.close()
            raise

        logger.debug("SSE endpoint for %s is %s", self._url, self._endpoint)

    async def _read_stream(self) -> None:
        """Consume the event stream until it ends or the transport closes."""
        assert self._client is not None
        reason = "SSE stream closed"
        try:
            async with self._client.stream(
                "GET",
                self._url,
                headers=SSE_DEFAULT_HEADERS,
                timeout=httpx.Timeout(None, connect=self._connection_timeout),
            ) as response:
                if response.status_code != 200:
                    raise MCPTransportError(
                        f"SSE stream returned HTTP {response.status_code}"
                    )
                async for event in iter_sse_events(response.aiter_text()):
                    await self._handle_event(event.event, event.data)
        except asyncio.CancelledError:
            raise
        except MCPTransportError as e:
            reason = e.message
            self._fail_endpoint(e)
        except httpx.HTTPError as e:
            reason = f"SSE stream failed: {e}"
            self._fail_endpoint(MCPTransportError(reason))
        finally:
            self._fail_endpoint(MCPTransportError(reason))
            self._inbound.close(reason)

    async def _handle_event(self, event: str, data: str) -> None:
        match event:
            case "endpoint":
                endpoint = urljoin(self._url, data.strip())
                if urlsplit(endpoint)[:2] != urlsplit(self._url)[:2]:
                    raise MCPTransportError(
                        f"Endpoint origin does not match connection origin: {endpoint}"
                    )
                if self._endpoint_ready is not None and not self._endpoint_ready.done():
                    self._endpoint_ready.set_result(endpoint)
            case "message":
                try:
                    message = json.loads(data)
                except json.JSONDecodeError as e:
                    logger.warning("Discarding malformed SSE message: %s", e)
                    return
                if not isinstance(message, dict):
                    logger.warning("Discarding non-object SSE message")
                    return
                await self._inbound.put(message)
            case _:
                logger.debug("Ignoring SSE event: %s", event)

    def _fail_endpoint(self, error: Exception) -> None:
        if self._endpoint_ready is not None and not self._endpoint_ready.done():
            self._endpoint_ready.set_exception(error)
            # Retrieved here so an unawaited failure is not reported at GC
            self._endpoint_ready.exception()

    async def send(self, message: dict[str, Any]) -> None:
        """POST one JSON-RPC message to the endpoint.

        Raises:
            MCPTransportError: If not connected or the POST fails.
        """
        if self._client is None or self._endpoint is None:
            raise MCPTransportError("Transport not connected")

        try:
            response = await self._client.post(
                self._endpoint,
                content=json.dumps(message, separators=(",", ":")),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise MCPTransportError(f"HTTP request failed: {e}") from e

        if response.is_error:
            raise MCPTransportError(
                f"Error POSTing to endpoint (HTTP {response.status_code}): {response.text}"
            )

    async def receive(self) -> dict[str, Any]:
        """Next message from the event stream."""
        return await self._inbound.get()

    async def close(self) -> None:
        """Stop the stream and close the HTTP client."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._inbound.close("SSE transport closed")
        self._endpoint = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return (
            self._client is not None
            and self._endpoint is not None
            and self._reader_task is not None
            and not self._reader_task.done()
        )


class SSEPlugin(TransportPlugin):
    """Server-Sent Events transport for the MCP protocol."""

    metadata = PluginMetadata(
        name="SSE Transport Plugin",
        version="1.0.0",
        transport_type=TransportType.SSE,
        description="Server-Sent Events transport for MCP protocol",
        author="mcplink",
    )
    config_model = SSEPluginConfig
    error_prefix = "SSE Plugin: "
    _error_hints = {
        ERROR_NOT_FOUND: "SSE endpoint not found (404). Verify the server URL and SSE endpoint path.",
        ERROR_TIMEOUT: (
            "SSE connection timeout. The server may be slow or the endpoint may not support SSE."
        ),
        ERROR_UNREACHABLE: "SSE connection failed. Check if the server is running and accessible.",
    }

    def is_supported(self, uri: str) -> bool:
        return has_scheme(uri, HTTP_SCHEMES)

    def get_default_config(self) -> dict[str, Any]:
        return get_default_plugin_config(TransportType.SSE)

    def _create_transport(self, uri: str, config: SSEPluginConfig) -> SSETransport:
        return SSETransport(
            uri,
            headers=dict(config.headers),
            connection_timeout=config.connection_timeout / 1000,
            read_timeout=config.read_timeout / 1000,
            keep_alive=config.keep_alive,
        )
