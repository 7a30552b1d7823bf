"""Event names and payload types published on the shared EventEmitter.

Payloads are frozen dataclasses. Names follow a ``group:action`` scheme so a
UI can subscribe to one group without knowing every emitter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcplink.core.types import NormalizedTool, TransportType
    from mcplink.plugin.base import TransportPlugin

__all__ = [
    "McpEvent",
    # Client
    "CLIENT_INITIALIZED",
    "CLIENT_CONNECTING",
    "CLIENT_CONNECTED",
    "CLIENT_DISCONNECTING",
    "CLIENT_DISCONNECTED",
    "CLIENT_ERROR",
    "CLIENT_PLUGIN_SWITCHED",
    "ClientInitialized",
    "ClientConnecting",
    "ClientConnected",
    "ClientDisconnecting",
    "ClientDisconnected",
    "ClientError",
    "ClientPluginSwitched",
    # Registry
    "REGISTRY_PLUGIN_REGISTERED",
    "REGISTRY_PLUGIN_UNREGISTERED",
    "REGISTRY_PLUGINS_LOADED",
    "PluginRegistered",
    "PluginUnregistered",
    "PluginsLoaded",
    # Plugin
    "PLUGIN_INITIALIZED",
    "PLUGIN_CONNECTED",
    "PLUGIN_DISCONNECTED",
    "PLUGIN_ERROR",
    "PluginInitialized",
    "PluginConnected",
    "PluginDisconnected",
    "PluginError",
    # Connection
    "CONNECTION_STATUS_CHANGED",
    "CONNECTION_HEALTH_CHECK",
    "ConnectionStatusChanged",
    "ConnectionHealthCheck",
    # Tools
    "TOOL_CALL_STARTED",
    "TOOL_CALL_COMPLETED",
    "TOOL_CALL_FAILED",
    "TOOLS_LIST_UPDATED",
    "ToolCallStarted",
    "ToolCallCompleted",
    "ToolCallFailed",
    "ToolsListUpdated",
    # Transport
    "TRANSPORT_OPEN",
    "TRANSPORT_CLOSE",
    "TRANSPORT_ERROR",
    "TRANSPORT_MESSAGE",
    "TransportClosed",
]


@dataclass(frozen=True)
class McpEvent:
    """Base class for event payloads."""

    pass


# --- Client ---

CLIENT_INITIALIZED = "client:initialized"
CLIENT_CONNECTING = "client:connecting"
CLIENT_CONNECTED = "client:connected"
CLIENT_DISCONNECTING = "client:disconnecting"
CLIENT_DISCONNECTED = "client:disconnected"
CLIENT_ERROR = "client:error"
CLIENT_PLUGIN_SWITCHED = "client:plugin-switched"


@dataclass(frozen=True)
class ClientInitialized(McpEvent):
    config: Any


@dataclass(frozen=True)
class ClientConnecting(McpEvent):
    uri: str
    type: TransportType


@dataclass(frozen=True)
class ClientConnected(McpEvent):
    uri: str
    type: TransportType


@dataclass(frozen=True)
class ClientDisconnecting(McpEvent):
    type: TransportType


@dataclass(frozen=True)
class ClientDisconnected(McpEvent):
    type: TransportType


@dataclass(frozen=True)
class ClientError(McpEvent):
    """An error outside any caller's stack, or a failed connect.

    Attributes:
        error: The exception.
        context: Where it happened ("connection", "disconnect", "health-check").
    """

    error: BaseException
    context: str | None = None


@dataclass(frozen=True)
class ClientPluginSwitched(McpEvent):
    from_type: TransportType | None
    to_type: TransportType


# --- Registry ---

REGISTRY_PLUGIN_REGISTERED = "registry:plugin-registered"
REGISTRY_PLUGIN_UNREGISTERED = "registry:plugin-unregistered"
REGISTRY_PLUGINS_LOADED = "registry:plugins-loaded"


@dataclass(frozen=True)
class PluginRegistered(McpEvent):
    plugin: TransportPlugin


@dataclass(frozen=True)
class PluginUnregistered(McpEvent):
    type: TransportType


@dataclass(frozen=True)
class PluginsLoaded(McpEvent):
    count: int


# --- Plugin ---

PLUGIN_INITIALIZED = "plugin:initialized"
PLUGIN_CONNECTED = "plugin:connected"
PLUGIN_DISCONNECTED = "plugin:disconnected"
PLUGIN_ERROR = "plugin:error"


@dataclass(frozen=True)
class PluginInitialized(McpEvent):
    plugin: TransportPlugin


@dataclass(frozen=True)
class PluginConnected(McpEvent):
    plugin: TransportPlugin
    uri: str


@dataclass(frozen=True)
class PluginDisconnected(McpEvent):
    plugin: TransportPlugin


@dataclass(frozen=True)
class PluginError(McpEvent):
    plugin: TransportPlugin
    error: BaseException


# --- Connection ---

CONNECTION_STATUS_CHANGED = "connection:status-changed"
CONNECTION_HEALTH_CHECK = "connection:health-check"


@dataclass(frozen=True)
class ConnectionStatusChanged(McpEvent):
    """Connected flag flipped.

    Attributes:
        is_connected: New state.
        type: Transport involved, None when unknown.
        error: Reason for a disconnect, if any.
    """

    is_connected: bool
    type: TransportType | None
    error: str | None = None


@dataclass(frozen=True)
class ConnectionHealthCheck(McpEvent):
    healthy: bool
    type: TransportType
    timestamp: float


# --- Tools ---

TOOL_CALL_STARTED = "tool:call-started"
TOOL_CALL_COMPLETED = "tool:call-completed"
TOOL_CALL_FAILED = "tool:call-failed"
TOOLS_LIST_UPDATED = "tools:list-updated"


@dataclass(frozen=True)
class ToolCallStarted(McpEvent):
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallCompleted(McpEvent):
    """Tool call finished.

    Attributes:
        tool_name: Name of the tool.
        result: The tool result.
        duration: Wall time in seconds.
    """

    tool_name: str
    result: Any
    duration: float


@dataclass(frozen=True)
class ToolCallFailed(McpEvent):
    tool_name: str
    error: BaseException
    duration: float


@dataclass(frozen=True)
class ToolsListUpdated(McpEvent):
    tools: tuple[NormalizedTool, ...]
    type: TransportType


# --- Transport (WebSocketTransport) ---
# "open" carries no payload, "error" carries the exception and "message" the
# decoded JSON object.

TRANSPORT_OPEN = "open"
TRANSPORT_CLOSE = "close"
TRANSPORT_ERROR = "error"
TRANSPORT_MESSAGE = "message"


@dataclass(frozen=True)
class TransportClosed(McpEvent):
    code: int | None
    reason: str = ""
