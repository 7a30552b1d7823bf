"""Core types, errors, events and helpers."""

from mcplink.core.emitter import EventEmitter
from mcplink.core.errors import (
    ConfigError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    InvalidUriError,
    MCPError,
    McpLinkError,
    MCPTransportError,
    NotConnectedError,
    ParseError,
    PartialListFailure,
    PluginLoadError,
    PluginNotFoundError,
)
from mcplink.core.log import apply_log_level, configure_logging
from mcplink.core.types import (
    ConnectionRequest,
    NormalizedTool,
    Primitive,
    PrimitivesResponse,
    PrimitiveType,
    TransportType,
)
from mcplink.core.uri import detect_transport_type, parse_uri

__all__ = [
    "EventEmitter",
    # Errors
    "McpLinkError",
    "ConfigError",
    "InvalidUriError",
    "PluginNotFoundError",
    "PluginLoadError",
    "ConnectionTimeoutError",
    "ConnectionFailedError",
    "NotConnectedError",
    "ParseError",
    "PartialListFailure",
    "MCPTransportError",
    "MCPError",
    # Types
    "TransportType",
    "ConnectionRequest",
    "Primitive",
    "PrimitiveType",
    "NormalizedTool",
    "PrimitivesResponse",
    # URI
    "parse_uri",
    "detect_transport_type",
    # Logging
    "configure_logging",
    "apply_log_level",
]
