"""Typed exception hierarchy for mcplink."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcplink.core.types import TransportType


class McpLinkError(Exception):
    """Base class for all mcplink errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(McpLinkError):
    """Raised for configuration issues (missing file, invalid JSON, validation failure)."""


class InvalidUriError(McpLinkError):
    """URI could not be parsed or uses a scheme the transport does not speak."""

    def __init__(self, uri: str, reason: str) -> None:
        self.uri = uri
        self.reason = reason
        super().__init__(f"Invalid URI '{uri}': {reason}")


class PluginNotFoundError(McpLinkError):
    """No plugin is registered for the requested transport type."""

    def __init__(self, transport_type: str) -> None:
        self.transport_type = transport_type
        super().__init__(f"Plugin for transport '{transport_type}' not found")


class PluginLoadError(McpLinkError):
    """Loading the built-in plugins failed; nothing was registered."""


class ConnectionTimeoutError(McpLinkError):
    """Connection attempt did not complete in time."""


class ConnectionFailedError(McpLinkError):
    """Connection could not be established.

    Attributes:
        transport_type: Transport the failure belongs to, if known.
    """

    def __init__(
        self, message: str, transport_type: TransportType | str | None = None
    ) -> None:
        super().__init__(message)
        self.transport_type = transport_type


class NotConnectedError(McpLinkError):
    """Operation needs an active connection and there is none."""


class ParseError(McpLinkError):
    """Inbound message was not valid JSON."""


class PartialListFailure(McpLinkError):
    """One primitive listing failed while the others succeeded.

    Attributes:
        primitive_type: "tool", "resource" or "prompt".
        cause: The underlying exception.
    """

    def __init__(self, primitive_type: str, cause: BaseException) -> None:
        self.primitive_type = primitive_type
        self.cause = cause
        super().__init__(f"Failed to list {primitive_type}s: {cause}")


class MCPTransportError(McpLinkError):
    """Error in the transport layer (send/receive on a wire)."""


class MCPError(McpLinkError):
    """Error from the MCP protocol or server.

    Attributes:
        code: JSON-RPC error code (if from server).
        message: Human-readable error message.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
