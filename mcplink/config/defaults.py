"""Default endpoints and per-transport default configuration."""

from typing import Any

from mcplink.config.schema import (
    SSEPluginConfig,
    StreamableHttpPluginConfig,
    WebSocketPluginConfig,
)
from mcplink.core.types import TransportType

DEFAULT_WEBSOCKET_URI = "ws://localhost:3006/message"
DEFAULT_SSE_URI = "http://localhost:3006/sse"
DEFAULT_STREAMABLE_HTTP_URI = "http://localhost:3006"

# SSE requests always advertise the event-stream media type
SSE_DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}


def get_default_uri(transport_type: TransportType) -> str:
    """Default server URI for a transport."""
    match transport_type:
        case TransportType.SSE:
            return DEFAULT_SSE_URI
        case TransportType.WEBSOCKET:
            return DEFAULT_WEBSOCKET_URI
        case TransportType.STREAMABLE_HTTP:
            return DEFAULT_STREAMABLE_HTTP_URI


def get_default_plugin_config(transport_type: TransportType) -> dict[str, Any]:
    """Built-in plugin config for a transport, in camelCase."""
    match transport_type:
        case TransportType.SSE:
            return SSEPluginConfig(headers=dict(SSE_DEFAULT_HEADERS)).to_dict()
        case TransportType.WEBSOCKET:
            return WebSocketPluginConfig().to_dict()
        case TransportType.STREAMABLE_HTTP:
            return StreamableHttpPluginConfig().to_dict()
