"""Free-function API for legacy call sites.

Every function works on a ClientContext, which owns one lazily created
McpClient. Callers that do not pass ``context=`` share the module default
context. Transport type is detected from the URI when not given
(``ws``/``wss`` -> websocket, anything else -> sse), and primitives come back
in the flat ``[{"type": ..., "value": ...}]`` shape.

Example:
    tools = await get_primitives_with_sse("http://localhost:3006/sse")
    result = await call_tool_with_sse("http://localhost:3006/sse", "echo", {"message": "hi"})
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from mcplink.client import McpClient
from mcplink.config.schema import ClientConfig
from mcplink.core.events import (
    CLIENT_CONNECTED,
    CLIENT_DISCONNECTED,
    CLIENT_ERROR,
    CONNECTION_STATUS_CHANGED,
    ClientConnected,
    ClientDisconnected,
    ClientError,
    ConnectionStatusChanged,
)
from mcplink.core.types import ConnectionRequest, NormalizedTool, TransportType
from mcplink.core.uri import detect_transport_type
from mcplink.mcp.protocol import MCPToolResult

logger = logging.getLogger(__name__)

ConfigLike = ClientConfig | Mapping[str, Any] | None

__all__ = [
    "ClientContext",
    "abort_mcp_connection",
    "call_tool_with_backwards_compatibility",
    "call_tool_with_sse",
    "call_tool_with_websocket",
    "check_mcp_server_connection",
    "connect_with_websocket",
    "create_mcp_client",
    "detect_transport_type",
    "force_reconnect_to_mcp_server",
    "get_default_context",
    "get_primitives_with_backwards_compatibility",
    "get_primitives_with_sse",
    "get_primitives_with_websocket",
    "is_mcp_server_connected",
    "normalize_tools_from_primitives",
    "reset_mcp_connection_state",
    "reset_mcp_connection_state_for_recovery",
    "run_with_backwards_compatibility",
    "run_with_sse",
    "set_default_context",
]


class ClientContext:
    """Application-scoped holder of one McpClient.

    The client is created and initialized on first use. If plugin loading
    fails the client is still kept; it retries loading on its first connect.
    """

    def __init__(self, config: ConfigLike = None) -> None:
        self._config = config
        self._client: McpClient | None = None
        self._lock = asyncio.Lock()

    @property
    def client(self) -> McpClient | None:
        """The client, or None if nothing has used this context yet."""
        return self._client

    async def get_client(self) -> McpClient:
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is None:
                client = McpClient(self._config)
                try:
                    await client.initialize()
                except Exception as e:
                    logger.error("Failed to initialize client: %s", e)
                _attach_logging_listeners(client)
                self._client = client
        return self._client

    async def close(self) -> None:
        """Disconnect and forget the client; the next use creates a new one."""
        client, self._client = self._client, None
        if client is not None:
            await client.disconnect()


def _attach_logging_listeners(client: McpClient) -> None:
    def on_status(event: ConnectionStatusChanged) -> None:
        logger.debug("Connection status changed: %s", event)

    def on_connected(event: ClientConnected) -> None:
        logger.debug("Client connected: %s", event)

    def on_disconnected(event: ClientDisconnected) -> None:
        logger.debug("Client disconnected: %s", event)

    def on_error(event: ClientError) -> None:
        logger.error("Client error (%s): %s", event.context, event.error)

    client.on(CONNECTION_STATUS_CHANGED, on_status)
    client.on(CLIENT_CONNECTED, on_connected)
    client.on(CLIENT_DISCONNECTED, on_disconnected)
    client.on(CLIENT_ERROR, on_error)


_default_context = ClientContext()


def get_default_context() -> ClientContext:
    return _default_context


def set_default_context(context: ClientContext) -> ClientContext:
    """Replace the module default context. Returns the previous one."""
    global _default_context
    previous, _default_context = _default_context, context
    return previous


def _resolve(context: ClientContext | None) -> ClientContext:
    return context if context is not None else _default_context


def _request(uri: str, transport_type: TransportType | str | None) -> ConnectionRequest:
    resolved = TransportType(transport_type) if transport_type else detect_transport_type(uri)
    return ConnectionRequest(uri=uri, type=resolved)


async def _connected_client(
    uri: str, transport_type: TransportType | str | None, context: ClientContext | None
) -> McpClient:
    client = await _resolve(context).get_client()
    if not client.is_connected():
        await client.connect(_request(uri, transport_type))
    return client


# --- Status ---


def is_mcp_server_connected(*, context: ClientContext | None = None) -> bool:
    client = _resolve(context).client
    return client is not None and client.is_connected()


async def check_mcp_server_connection(*, context: ClientContext | None = None) -> bool:
    """Health of the current connection; False on any failure."""
    try:
        client = await _resolve(context).get_client()
        return await client.is_healthy()
    except Exception as e:
        logger.error("check_mcp_server_connection failed: %s", e)
        return False


# --- Operations ---


async def call_tool_with_backwards_compatibility(
    uri: str,
    tool_name: str,
    args: Mapping[str, Any] | None = None,
    transport_type: TransportType | str | None = None,
    *,
    context: ClientContext | None = None,
) -> MCPToolResult:
    """Connect if needed, then call ``tool_name``. Errors propagate."""
    client = await _connected_client(uri, transport_type, context)
    return await client.call_tool(tool_name, args or {})


async def get_primitives_with_backwards_compatibility(
    uri: str,
    force_refresh: bool = False,
    transport_type: TransportType | str | None = None,
    *,
    context: ClientContext | None = None,
) -> list[dict[str, Any]]:
    """Connect if needed, then list primitives in the flat legacy shape."""
    client = await _connected_client(uri, transport_type, context)
    response = await client.get_primitives(force_refresh)
    return response.to_primitives()


async def force_reconnect_to_mcp_server(
    uri: str,
    transport_type: TransportType | str | None = None,
    *,
    context: ClientContext | None = None,
) -> None:
    client = await _resolve(context).get_client()
    if client.is_connected():
        await client.disconnect()
    await client.connect(_request(uri, transport_type))


async def run_with_backwards_compatibility(
    uri: str,
    transport_type: TransportType | str | None = None,
    *,
    context: ClientContext | None = None,
) -> None:
    """Connect and fetch primitives once, logging what the server offers."""
    client = await _resolve(context).get_client()
    await client.connect(_request(uri, transport_type))
    response = await client.get_primitives()
    logger.info(
        "Connected, found %d tools, %d resources, %d prompts",
        len(response.tools),
        len(response.resources),
        len(response.prompts),
    )


async def reset_mcp_connection_state(*, context: ClientContext | None = None) -> None:
    client = _resolve(context).client
    if client is not None and client.is_connected():
        await client.disconnect()


def reset_mcp_connection_state_for_recovery(*, context: ClientContext | None = None) -> None:
    # Recovery is driven by the client's health monitoring
    logger.debug("reset_mcp_connection_state_for_recovery: handled by health monitoring")


async def abort_mcp_connection(*, context: ClientContext | None = None) -> None:
    """Disconnect, aborting a connect that is still in flight."""
    client = _resolve(context).client
    if client is not None:
        await client.disconnect()


async def create_mcp_client(config: ConfigLike = None) -> McpClient:
    """A new, initialized client independent of any context."""
    client = McpClient(config)
    await client.initialize()
    return client


# Legacy aliases
call_tool_with_sse = call_tool_with_backwards_compatibility
get_primitives_with_sse = get_primitives_with_backwards_compatibility
run_with_sse = run_with_backwards_compatibility


# --- WebSocket ---


async def connect_with_websocket(uri: str, config: ConfigLike = None) -> McpClient:
    """A new client connected to ``uri`` over WebSocket."""
    client = await create_mcp_client(config)
    await client.connect(ConnectionRequest(uri=uri, type=TransportType.WEBSOCKET))
    return client


async def call_tool_with_websocket(
    uri: str,
    tool_name: str,
    args: Mapping[str, Any] | None = None,
    *,
    context: ClientContext | None = None,
) -> MCPToolResult:
    client = await _resolve(context).get_client()
    await client.connect(ConnectionRequest(uri=uri, type=TransportType.WEBSOCKET))
    return await client.call_tool(tool_name, args or {})


async def get_primitives_with_websocket(
    uri: str,
    force_refresh: bool = False,
    *,
    context: ClientContext | None = None,
) -> list[dict[str, Any]]:
    client = await _resolve(context).get_client()
    await client.connect(ConnectionRequest(uri=uri, type=TransportType.WEBSOCKET))
    response = await client.get_primitives(force_refresh)
    return response.to_primitives()


# --- Utilities ---


def normalize_tools_from_primitives(
    primitives: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Tool entries of a flat primitives list, normalized to the legacy tool dict."""
    return [
        NormalizedTool.from_value(p["value"]).to_dict()
        for p in primitives
        if p.get("type") == "tool"
    ]
