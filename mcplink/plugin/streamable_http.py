"""Streamable HTTP transport and plugin.

MCP over Streamable HTTP POSTs every client message to one endpoint. The
server answers each POST with either a JSON body (one message or a batch),
an SSE body carrying one or more messages, or 202/204 with nothing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from typing import Any

import httpx

from mcplink.config.defaults import get_default_plugin_config
from mcplink.config.schema import StreamableHttpPluginConfig
from mcplink.core.errors import MCPTransportError
from mcplink.core.types import TransportType
from mcplink.core.uri import HTTP_SCHEMES, has_scheme
from mcplink.mcp.protocol import PROTOCOL_VERSION
from mcplink.mcp.sse import SSEDecoder
from mcplink.mcp.transport import InboundQueue, MCPTransport
from mcplink.plugin.base import (
    ERROR_NOT_FOUND,
    ERROR_PROTOCOL,
    ERROR_TIMEOUT,
    ERROR_UNREACHABLE,
    PluginMetadata,
    TransportPlugin,
)

logger = logging.getLogger(__name__)

# Retry on server errors and rate limiting, but not client errors
DEFAULT_RETRY_BACKOFF: float = 1.0
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Headers required on every request to a Streamable HTTP server
MCP_HTTP_HEADERS: dict[str, str] = {
    "MCP-Protocol-Version": PROTOCOL_VERSION,
    "Accept": "application/json, text/event-stream",
}

# Session ids are alphanumeric with dashes/underscores, bounded in length
MAX_SESSION_ID_LENGTH: int = 256
SESSION_ID_PATTERN: re.Pattern[str] = re.compile(r"^[a-zA-Z0-9_-]+$")


class StreamableHttpTransport(MCPTransport):
    """Connect to a remote MCP server via Streamable HTTP.

    Each send() is one POST; whatever the response carries is queued for
    receive(). The ``mcp-session-id`` header returned by the server is
    replayed on later requests.

    Attributes:
        url: Endpoint URL of the MCP server.
        session_id: Server-assigned session id, if any.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        connection_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        keep_alive: bool = True,
    ):
        """Initialize StreamableHttpTransport.

        Args:
            url: Endpoint URL.
            headers: Additional HTTP headers (e.g., for auth).
            connection_timeout: Seconds to establish a TCP/TLS connection.
            read_timeout: Seconds to wait for a response.
            max_retries: Retries for transient failures.
            retry_backoff: Base delay in seconds for exponential backoff.
            keep_alive: Reuse HTTP connections between requests.
        """
        self._url = url.rstrip("/")
        self._headers = headers or {}
        self._connection_timeout = connection_timeout
        self._read_timeout = read_timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._keep_alive = keep_alive
        self._client: httpx.AsyncClient | None = None
        self._session_id: str | None = None
        self._inbound = InboundQueue()

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        """Create the HTTP client (connection pool). No request is made."""
        if self.is_connected:
            return
        combined_headers = {
            "Content-Type": "application/json",
            **MCP_HTTP_HEADERS,
            **self._headers,  # User headers override defaults
        }
        limits = httpx.Limits() if self._keep_alive else httpx.Limits(max_keepalive_connections=0)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._read_timeout, connect=self._connection_timeout),
            follow_redirects=False,
            headers=combined_headers,
            limits=limits,
        )
        self._inbound = InboundQueue()

    async def send(self, message: dict[str, Any]) -> None:
        """POST one JSON-RPC message and queue whatever the response carries.

        Retries on transient failures (5xx, 429, network errors) with
        exponential backoff.

        Raises:
            MCPTransportError: If not connected or the request fails.
        """
        if self._client is None:
            raise MCPTransportError("Transport not connected")

        data = json.dumps(message, separators=(",", ":"))
        req_headers: dict[str, str] = {}
        if self._session_id:
            req_headers["mcp-session-id"] = self._session_id

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.post(
                    self._url, content=data, headers=req_headers or None
                )

                if self._is_retryable_status(response.status_code) and attempt < self._max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        "HTTP %d on attempt %d, retrying in %.2fs",
                        response.status_code,
                        attempt + 1,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                response.raise_for_status()
                self._capture_session_id(response.headers)
                await self._queue_response(response)
                return

            except httpx.TransportError as e:
                if attempt < self._max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        "Transport error on attempt %d (%s), retrying in %.2fs",
                        attempt + 1,
                        e,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise MCPTransportError(
                    f"HTTP request failed after {self._max_retries + 1} attempts: {e}"
                ) from e
            except MCPTransportError:
                raise
            except Exception as e:
                raise MCPTransportError(f"HTTP request failed: {e}") from e

    async def _queue_response(self, response: httpx.Response) -> None:
        """Parse a POST response body into inbound messages."""
        if response.status_code in (202, 204) or not response.content:
            return

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        match content_type:
            case "text/event-stream":
                decoder = SSEDecoder()
                events = decoder.feed(response.text) + decoder.flush()
                for event in events:
                    if event.event != "message":
                        continue
                    self._queue_payload(event.data)
            case "application/json":
                self._queue_payload(response.text)
            case _:
                raise MCPTransportError(f"Unexpected content type: {content_type or 'none'}")

    def _queue_payload(self, text: str) -> None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Discarding malformed response body: %s", e)
            return

        messages = payload if isinstance(payload, list) else [payload]
        for message in messages:
            if isinstance(message, dict):
                self._inbound.put_nowait(message)
            else:
                logger.warning("Discarding non-object message in response")

    async def receive(self) -> dict[str, Any]:
        """Next message taken from POST responses."""
        return await self._inbound.get()

    async def close(self) -> None:
        """End the server session (best effort) and close the HTTP client."""
        client, self._client = self._client, None
        self._inbound.close("Streamable HTTP transport closed")
        if client is None:
            return
        if self._session_id:
            try:
                await client.delete(self._url, headers={"mcp-session-id": self._session_id})
            except httpx.HTTPError as e:
                logger.debug("Session DELETE failed: %s", e)
            self._session_id = None
        await client.aclose()

    @property
    def is_connected(self) -> bool:
        if self._client is None:
            return False
        return not self._client.is_closed

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _validate_session_id(self, session_id: str) -> bool:
        """Reject session ids that are too long or contain unexpected characters."""
        if not session_id:
            return False

        if len(session_id) > MAX_SESSION_ID_LENGTH:
            logger.warning(
                "Rejecting session ID: too long (%d > %d)",
                len(session_id),
                MAX_SESSION_ID_LENGTH,
            )
            return False

        if not SESSION_ID_PATTERN.match(session_id):
            logger.warning("Rejecting session ID: invalid format")
            return False

        return True

    def _capture_session_id(self, headers: Any) -> None:
        session_id = headers.get("mcp-session-id")
        if session_id and self._validate_session_id(session_id):
            self._session_id = session_id

    def _is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff (base * 2^attempt) plus 0-10% jitter.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds before next retry.
        """
        delay: float = self._retry_backoff * (2 ** attempt)
        jitter: float = random.uniform(0, 0.1 * delay)
        return delay + jitter


class StreamableHttpPlugin(TransportPlugin):
    """Streamable HTTP transport for the MCP protocol."""

    metadata = PluginMetadata(
        name="StreamableHttpPlugin",
        version="1.0.0",
        transport_type=TransportType.STREAMABLE_HTTP,
        description="Streamable HTTP transport for MCP protocol",
        author="mcplink",
    )
    config_model = StreamableHttpPluginConfig
    error_prefix = "StreamableHttpPlugin: "
    _error_hints = {
        ERROR_NOT_FOUND: (
            "Streamable HTTP endpoint not found (404). Verify the server URL and endpoint path."
        ),
        ERROR_TIMEOUT: "Streamable HTTP connection timeout. The server may be slow or unreachable.",
        ERROR_UNREACHABLE: (
            "Streamable HTTP connection failed. Check if the server is running and accessible."
        ),
        ERROR_PROTOCOL: (
            "Streamable HTTP protocol error. The server may not support streamable HTTP."
        ),
    }

    def is_supported(self, uri: str) -> bool:
        return has_scheme(uri, HTTP_SCHEMES)

    def get_default_config(self) -> dict[str, Any]:
        return get_default_plugin_config(TransportType.STREAMABLE_HTTP)

    @property
    def fallback_to_sse(self) -> bool:
        """Whether a failed connect should be retried over SSE."""
        return bool(self._config and self._config.fallback_to_sse)

    def _create_transport(
        self, uri: str, config: StreamableHttpPluginConfig
    ) -> StreamableHttpTransport:
        return StreamableHttpTransport(
            uri,
            headers=dict(config.headers),
            connection_timeout=config.connection_timeout / 1000,
            read_timeout=config.read_timeout / 1000,
            max_retries=config.max_retries,
            keep_alive=config.keep_alive,
        )
