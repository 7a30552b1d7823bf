"""Transport plugin contract and the behavior every plugin shares.

A plugin turns a server URI into a connected MCPTransport for one wire
protocol and routes the data-plane calls (tool invocation, primitive listing)
through the McpSession riding on it. The set of plugins is closed: one per
TransportType.

Subclasses provide:
- ``metadata`` and ``config_model`` class attributes
- ``is_supported(uri)``
- ``_create_transport(uri, config)``: build the transport, no network I/O
- ``_error_hints``: actionable messages for common failure classes
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from mcplink.core.emitter import EventEmitter
from mcplink.core.errors import (
    ConfigError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    InvalidUriError,
    McpLinkError,
    NotConnectedError,
    PartialListFailure,
)
from mcplink.core.events import (
    PLUGIN_CONNECTED,
    PLUGIN_DISCONNECTED,
    PLUGIN_ERROR,
    PLUGIN_INITIALIZED,
    McpEvent,
    PluginConnected,
    PluginDisconnected,
    PluginError,
    PluginInitialized,
)
from mcplink.core.types import Primitive, PrimitiveType, TransportType
from mcplink.core.uri import parse_uri
from mcplink.core.utils import deep_merge
from mcplink.mcp.protocol import MCPToolResult
from mcplink.mcp.session import McpSession
from mcplink.mcp.transport import MCPTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginMetadata:
    """Static description of a plugin.

    Attributes:
        name: Display name.
        version: Plugin version.
        transport_type: Transport this plugin speaks; the registry key.
        description: One-line description.
        author: Plugin author.
    """

    name: str
    version: str
    transport_type: TransportType
    description: str | None = None
    author: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "transportType": self.transport_type.value,
            "description": self.description,
            "author": self.author,
        }


# Failure classes recognised in transport errors, checked in this order
ERROR_NOT_FOUND = "not_found"
ERROR_TIMEOUT = "timeout"
ERROR_INVALID_URL = "invalid_url"
ERROR_UNREACHABLE = "unreachable"
ERROR_PROTOCOL = "protocol"

# Capability key -> primitive type, in listing order
_LISTINGS: tuple[tuple[str, PrimitiveType], ...] = (
    ("resources", "resource"),
    ("tools", "tool"),
    ("prompts", "prompt"),
)


def classify_error(error: BaseException) -> str | None:
    """Map an exception to one of the failure classes above, or None."""
    text = str(error)
    lowered = text.lower()

    if "404" in text:
        return ERROR_NOT_FOUND
    if (
        isinstance(error, (TimeoutError, ConnectionTimeoutError))
        or "timeout" in lowered
        or "timed out" in lowered
    ):
        return ERROR_TIMEOUT
    if isinstance(error, InvalidUriError) or "failed to construct" in lowered:
        return ERROR_INVALID_URL
    if (
        isinstance(error, ConnectionError)
        or "failed to fetch" in lowered
        or "connect" in lowered
    ):
        return ERROR_UNREACHABLE
    if "protocol" in lowered:
        return ERROR_PROTOCOL
    return None


class TransportPlugin(ABC):
    """Base class for transport plugins.

    Lifecycle: registered -> initialized -> connected <-> disconnected.
    The owning McpClient drives the transitions; the registry guarantees
    ``initialize`` runs once per plugin.

    Attributes:
        metadata: Static plugin description.
        config_model: Pydantic model the plugin config is validated into.
    """

    metadata: ClassVar[PluginMetadata]
    config_model: ClassVar[type[BaseModel]]
    error_prefix: ClassVar[str] = ""
    _error_hints: ClassVar[Mapping[str, str]] = {}

    def __init__(self, events: EventEmitter[McpEvent] | None = None) -> None:
        self._events: EventEmitter[McpEvent] = events or EventEmitter()
        self._config: Any = None
        self._transport: MCPTransport | None = None
        self._connect_task: asyncio.Task[MCPTransport] | None = None

    @property
    def transport_type(self) -> TransportType:
        return self.metadata.transport_type

    @property
    def transport(self) -> MCPTransport | None:
        return self._transport

    @property
    def config(self) -> Any:
        """Validated config model, None before ``initialize``."""
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._config is not None

    def bind_events(self, events: EventEmitter[McpEvent]) -> None:
        """Publish plugin events on ``events`` from now on."""
        self._events = events

    # --- Lifecycle ---

    async def initialize(self, config: Mapping[str, Any] | None = None) -> None:
        """Validate and store config over the plugin defaults. No I/O.

        Raises:
            ConfigError: If the config does not validate.
        """
        merged = deep_merge(self.get_default_config(), config or {})
        try:
            self._config = self.config_model.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"{self.error_prefix}Invalid plugin config: {e}") from e

        logger.debug("%s initialized with %s", self.metadata.name, merged)
        self._events.emit(PLUGIN_INITIALIZED, PluginInitialized(plugin=self))

    async def connect(
        self, uri: str, overrides: Mapping[str, Any] | None = None
    ) -> MCPTransport:
        """Build and store a transport for ``uri``.

        ``overrides`` are merged over the stored config for this transport
        only; the stored config is left unchanged. A transport the plugin
        already holds is closed first. A call made while another connect is
        in flight joins it.

        Raises:
            InvalidUriError: Unparseable URI or unsupported scheme.
            ConfigError: ``overrides`` do not validate.
            ConnectionFailedError: Transport construction failed.
        """
        if self._connect_task is not None and not self._connect_task.done():
            logger.debug("%s joining in-flight connect", self.metadata.name)
            return await asyncio.shield(self._connect_task)

        task = asyncio.ensure_future(self._connect(uri, overrides))
        self._connect_task = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._connect_task is task and task.done():
                self._connect_task = None

    async def _connect(self, uri: str, overrides: Mapping[str, Any] | None) -> MCPTransport:
        parse_uri(uri)
        if not self.is_supported(uri):
            raise InvalidUriError(
                uri, f"scheme not supported by {self.metadata.name}"
            )
        if not self.is_initialized:
            await self.initialize()
        config = self._effective_config(overrides)

        previous, self._transport = self._transport, None
        if previous is not None:
            logger.debug("%s closing previous transport", self.metadata.name)
            await self._close_transport(previous)

        logger.info("%s creating transport for %s", self.metadata.name, uri)
        try:
            transport = self._create_transport(uri, config)
        except McpLinkError:
            raise
        except Exception as e:
            raise self.enrich_error(e) from e

        self._transport = transport
        self._events.emit(PLUGIN_CONNECTED, PluginConnected(plugin=self, uri=uri))
        return transport

    def _effective_config(self, overrides: Mapping[str, Any] | None) -> Any:
        if not overrides:
            return self._config
        merged = deep_merge(self._config.to_dict(), overrides)
        try:
            return self.config_model.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"{self.error_prefix}Invalid connection config: {e}") from e

    async def _close_transport(self, transport: MCPTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning("%s error during transport cleanup: %s", self.metadata.name, e)

    async def disconnect(self) -> None:
        """Close the stored transport. Never raises; always clears the reference."""
        transport, self._transport = self._transport, None
        self._connect_task = None
        if transport is None:
            return
        await self._close_transport(transport)
        logger.info("%s disconnected", self.metadata.name)
        self._events.emit(PLUGIN_DISCONNECTED, PluginDisconnected(plugin=self))

    def is_connected(self) -> bool:
        """True while the plugin holds a transport."""
        return self._transport is not None

    @abstractmethod
    def is_supported(self, uri: str) -> bool:
        """True if ``uri`` uses a scheme this plugin speaks."""
        ...

    @abstractmethod
    def get_default_config(self) -> dict[str, Any]:
        """Built-in configuration, camelCase keys."""
        ...

    async def is_healthy(self) -> bool:
        """Cheap liveness check. Stream transports report healthy while held."""
        return self.is_connected()

    @abstractmethod
    def _create_transport(self, uri: str, config: Any) -> MCPTransport:
        """Construct the transport from a validated ``config``. Must not perform network I/O."""
        ...

    # --- Errors ---

    def enrich_error(self, error: BaseException) -> ConnectionFailedError | ConnectionTimeoutError:
        """Rewrite a raw failure into an actionable, transport-qualified error."""
        kind = classify_error(error)
        hint = self._error_hints.get(kind) if kind else None
        message = f"{self.error_prefix}{hint or error}"
        if kind == ERROR_TIMEOUT:
            return ConnectionTimeoutError(message)
        return ConnectionFailedError(message, transport_type=self.transport_type)

    def _require_connection(self) -> None:
        if not self.is_connected():
            raise NotConnectedError(f"{self.error_prefix}Not connected")

    # --- Data plane ---

    async def call_tool(
        self, session: McpSession, name: str, args: Mapping[str, Any] | None = None
    ) -> MCPToolResult:
        """Invoke ``name`` on the server behind ``session``.

        Raises:
            NotConnectedError: If the plugin holds no transport.
            MCPError: If the server rejects the call.
        """
        self._require_connection()
        logger.debug("%s calling tool: %s", self.metadata.name, name)
        result = await session.call_tool(name, dict(args or {}))
        logger.debug("%s tool call completed: %s", self.metadata.name, name)
        return result

    async def get_primitives(self, session: McpSession) -> list[Primitive]:
        """List the resources, tools and prompts the server advertises.

        Listings run concurrently. A failed listing is logged, emitted as
        ``plugin:error`` and left out; the rest are returned. Duplicate
        ``(type, name)`` pairs keep the first occurrence.

        Raises:
            NotConnectedError: If the plugin holds no transport.
            PartialListFailure: If every attempted listing failed.
        """
        self._require_connection()

        server_info = session.server_info
        if server_info is None:
            return []
        listers: dict[str, Any] = {
            "resources": session.list_resources,
            "tools": session.list_tools,
            "prompts": session.list_prompts,
        }
        planned: list[tuple[PrimitiveType, Awaitable[Sequence[Any]]]] = [
            (ptype, listers[key]()) for key, ptype in _LISTINGS if server_info.supports(key)
        ]
        if not planned:
            return []

        results = await asyncio.gather(
            *(call for _, call in planned), return_exceptions=True
        )

        primitives: list[Primitive] = []
        failures: list[PartialListFailure] = []
        seen: set[tuple[str, str]] = set()
        for (ptype, _), result in zip(planned, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failure = PartialListFailure(ptype, result)
                failures.append(failure)
                logger.warning("%s %s", self.metadata.name, failure.message)
                self._events.emit(PLUGIN_ERROR, PluginError(plugin=self, error=failure))
                continue
            for item in result:
                value = item.to_dict()
                key = (ptype, value.get("name", ""))
                if key in seen:
                    continue
                seen.add(key)
                primitives.append(Primitive(type=ptype, value=value))

        if len(failures) == len(planned):
            raise failures[0]

        logger.debug("%s retrieved %d primitives", self.metadata.name, len(primitives))
        return primitives

    def get_info(self) -> dict[str, Any]:
        """Metadata plus connection flags, for diagnostics."""
        return {
            **self.metadata.to_dict(),
            "initialized": self.is_initialized,
            "connected": self.is_connected(),
        }
