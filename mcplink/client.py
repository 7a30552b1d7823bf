"""MCP client: one connection to one server over a pluggable transport.

The McpClient drives the connection lifecycle:
1. Pick the plugin for the requested transport (initialized on first use)
2. Build the transport and open an MCP session on it
3. Route tool calls and primitive listing through the active plugin
4. Watch connection health and publish every transition on the event bus

Usage:
    client = McpClient()
    await client.initialize()
    await client.connect(ConnectionRequest("ws://localhost:3006/message", TransportType.WEBSOCKET))
    primitives = await client.get_primitives()
    result = await client.call_tool("echo", {"message": "hello"})
    await client.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from mcplink.config.loader import merge_config
from mcplink.config.schema import ClientConfig
from mcplink.core.emitter import EventEmitter, Handler
from mcplink.core.errors import (
    ConfigError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    InvalidUriError,
    MCPError,
    MCPTransportError,
    NotConnectedError,
)
from mcplink.core.events import (
    CLIENT_CONNECTED,
    CLIENT_CONNECTING,
    CLIENT_DISCONNECTED,
    CLIENT_DISCONNECTING,
    CLIENT_ERROR,
    CLIENT_INITIALIZED,
    CLIENT_PLUGIN_SWITCHED,
    CONNECTION_HEALTH_CHECK,
    CONNECTION_STATUS_CHANGED,
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_STARTED,
    TOOLS_LIST_UPDATED,
    ClientConnected,
    ClientConnecting,
    ClientDisconnected,
    ClientDisconnecting,
    ClientError,
    ClientInitialized,
    ClientPluginSwitched,
    ConnectionHealthCheck,
    ConnectionStatusChanged,
    McpEvent,
    ToolCallCompleted,
    ToolCallFailed,
    ToolCallStarted,
    ToolsListUpdated,
)
from mcplink.core.log import apply_log_level
from mcplink.core.types import (
    ConnectionRequest,
    NormalizedTool,
    PrimitivesResponse,
    TransportType,
)
from mcplink.mcp.protocol import MCPClientInfo, MCPToolResult
from mcplink.mcp.session import McpSession
from mcplink.mcp.transport import MCPTransport
from mcplink.plugin.base import TransportPlugin
from mcplink.plugin.registry import PluginRegistry
from mcplink.plugin.streamable_http import StreamableHttpPlugin
from mcplink.plugin.websocket import WebSocketPlugin

logger = logging.getLogger(__name__)

# Seconds a primitives listing stays fresh
PRIMITIVES_CACHE_TTL: float = 300.0

# Failures after which a Streamable HTTP connect may fall back to SSE
_FALLBACK_ERRORS = (
    ConnectionFailedError,
    ConnectionTimeoutError,
    MCPError,
    MCPTransportError,
)


class ClientState(str, Enum):
    """Lifecycle state of an McpClient.

    ERROR ends the failed attempt only; a later connect() starts a new one.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"


def _coerce_config(config: ClientConfig | Mapping[str, Any] | None) -> ClientConfig:
    if config is None:
        return ClientConfig()
    if isinstance(config, ClientConfig):
        return config
    try:
        return ClientConfig.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigError(f"Config validation failed: {e}") from e


def _caller_cancelled() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class McpClient:
    """Connects to one MCP server and exposes tools, resources and prompts.

    Only the client mutates the active plugin, transport and session; plugins
    are borrowed from the registry.

    Attributes:
        events: Shared bus for client, registry, plugin, connection and tool events.
    """

    def __init__(
        self,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        registry: PluginRegistry | None = None,
        events: EventEmitter[McpEvent] | None = None,
    ) -> None:
        """Create a client. No I/O happens until connect().

        Args:
            config: Client configuration; camelCase or snake_case mapping accepted.
            registry: Plugin registry to borrow plugins from. A new one sharing
                ``events`` is created when omitted.
            events: Event bus. Defaults to the registry's bus, or a new one.

        Raises:
            ConfigError: If ``config`` does not validate.
        """
        self._config = _coerce_config(config)
        if events is None:
            events = registry.events if registry is not None else EventEmitter()
        self.events: EventEmitter[McpEvent] = events
        self._registry = registry or PluginRegistry(events)
        apply_log_level(self._config.global_.log_level)

        self._state = ClientState.UNINITIALIZED
        self._plugin: TransportPlugin | None = None
        self._transport: MCPTransport | None = None
        self._session: McpSession | None = None
        self._uri: str | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._health_task: asyncio.Task[None] | None = None
        self._release_tasks: set[asyncio.Task[None]] = set()
        self._primitives_cache: PrimitivesResponse | None = None
        self._primitives_cache_time: float = 0.0

        logger.debug("McpClient created with config: %s", self._config.to_dict())
        self.events.emit(CLIENT_INITIALIZED, ClientInitialized(config=self._config))

    # --- Events ---

    def on(self, event: str, handler: Handler) -> None:
        self.events.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self.events.off(event, handler)

    # --- Lifecycle ---

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    @property
    def session(self) -> McpSession | None:
        """Active MCP session, None when not connected."""
        return self._session

    async def initialize(self) -> None:
        """Load the built-in plugins unless the registry already has plugins.

        Raises:
            PluginLoadError: If the plugins cannot be loaded.
        """
        if not self._registry.list_available():
            logger.debug("Loading default plugins...")
            self._registry.load_default_plugins()
        if self._state == ClientState.UNINITIALIZED:
            self._state = ClientState.INITIALIZED
        logger.debug("Initialization complete")

    def _matches(self, request: ConnectionRequest) -> bool:
        return (
            self._state == ClientState.CONNECTED
            and self._plugin is not None
            and self._plugin.transport_type == request.type
            and self._uri == request.uri
        )

    async def connect(self, request: ConnectionRequest | None = None) -> None:
        """Connect to ``request.uri`` over ``request.type``.

        Without a request, the configured ``default_uri`` and
        ``default_transport`` are used.

        No-op when already connected to the same URI with the same transport.
        A call made while another connect is in flight waits for it first.
        An existing connection to anything else is closed.

        Raises:
            InvalidUriError: The plugin does not accept the URI.
            PluginNotFoundError: No plugin for the transport.
            ConnectionTimeoutError: The MCP handshake timed out.
            ConnectionFailedError: The transport or handshake failed, or
                disconnect() aborted the attempt.
        """
        if request is None:
            request = ConnectionRequest(
                uri=self._config.default_uri, type=self._config.default_transport
            )
        request = ConnectionRequest(
            uri=request.uri, type=TransportType(request.type), config=request.config
        )
        if self._matches(request):
            logger.debug("Already connected via %s, skipping", request.type.value)
            return

        pending = self._connect_task
        if pending is not None and not pending.done():
            logger.debug("Connection already in progress, waiting...")
            try:
                await asyncio.shield(pending)
            except (Exception, asyncio.CancelledError):
                if _caller_cancelled():
                    raise
                logger.debug("Previous connection failed, starting new one")
            else:
                if self._matches(request):
                    return

        if self._state == ClientState.CONNECTED:
            logger.info(
                "Switching from %s to %s (%s)",
                self._plugin.transport_type.value if self._plugin else None,
                request.type.value,
                request.uri,
            )
            await self.disconnect()

        if not self._registry.list_available():
            await self.initialize()

        task = asyncio.ensure_future(self._connect_with_fallback(request))
        self._connect_task = task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if _caller_cancelled() or not task.cancelled():
                raise
            raise ConnectionFailedError(
                "Connection aborted by disconnect()", transport_type=request.type
            ) from None
        finally:
            if self._connect_task is task and task.done():
                self._connect_task = None

    async def _connect_with_fallback(self, request: ConnectionRequest) -> None:
        try:
            await self._perform_connection(request)
        except _FALLBACK_ERRORS:
            if request.type != TransportType.STREAMABLE_HTTP or not self._fallback_enabled():
                raise
            logger.warning("Streamable HTTP connect failed, falling back to SSE for %s", request.uri)
            self.events.emit(
                CLIENT_PLUGIN_SWITCHED,
                ClientPluginSwitched(from_type=TransportType.STREAMABLE_HTTP, to_type=TransportType.SSE),
            )
            await self._perform_connection(ConnectionRequest(uri=request.uri, type=TransportType.SSE))

    def _fallback_enabled(self) -> bool:
        plugin = self._registry.get_plugin(TransportType.STREAMABLE_HTTP)
        return isinstance(plugin, StreamableHttpPlugin) and plugin.fallback_to_sse

    async def _perform_connection(self, request: ConnectionRequest) -> None:
        uri, transport_type = request.uri, request.type
        logger.info("Connecting to %s via %s", uri, transport_type.value)
        self._state = ClientState.CONNECTING
        self.events.emit(CLIENT_CONNECTING, ClientConnecting(uri=uri, type=transport_type))

        try:
            plugin = await self._registry.get_initialized_plugin(
                transport_type, self._config.plugins.for_type(transport_type)
            )

            if not plugin.is_supported(uri):
                raise InvalidUriError(uri, f"plugin {transport_type.value} does not support this URI")

            transport = await plugin.connect(uri, request.config)
            self._plugin = plugin
            self._transport = transport

            if isinstance(plugin, WebSocketPlugin):
                plugin.set_disconnection_callback(self._on_websocket_disconnected)

            timeout = self._config.global_.timeout / 1000
            session = McpSession(
                transport,
                MCPClientInfo(name=f"mcp-client-{transport_type.value}"),
                request_timeout=timeout,
            )
            self._session = session
            logger.debug("Starting MCP session on %s transport", transport_type.value)
            try:
                await session.connect(timeout=timeout)
            except Exception as e:
                raise plugin.enrich_error(e) from e

        except asyncio.CancelledError:
            await self._cleanup()
            self._state = ClientState.DISCONNECTED
            raise
        except Exception as e:
            logger.error("Connection failed: %s", e)
            await self._cleanup()
            self._state = ClientState.ERROR
            self.events.emit(CLIENT_ERROR, ClientError(error=e, context="connection"))
            self.events.emit(
                CONNECTION_STATUS_CHANGED,
                ConnectionStatusChanged(is_connected=False, type=transport_type, error=str(e)),
            )
            raise

        self._uri = uri
        self._state = ClientState.CONNECTED
        self._clear_primitives_cache()
        self._start_health_monitoring()

        logger.info("Successfully connected via %s", transport_type.value)
        self.events.emit(CLIENT_CONNECTED, ClientConnected(uri=uri, type=transport_type))
        self.events.emit(
            CONNECTION_STATUS_CHANGED,
            ConnectionStatusChanged(is_connected=True, type=transport_type),
        )

    async def disconnect(self) -> None:
        """Close the active connection. Never raises.

        An in-flight connect is aborted. No-op when not connected.
        """
        pending = self._connect_task
        if pending is not None and not pending.done():
            logger.info("Aborting in-flight connection")
            pending.cancel()
            await asyncio.wait([pending])

        if self._state != ClientState.CONNECTED:
            logger.debug("Already disconnected")
            return

        current_type = self._plugin.transport_type if self._plugin else None
        logger.info("Disconnecting from %s", current_type.value if current_type else "unknown")
        self._state = ClientState.DISCONNECTING
        if current_type is not None:
            self.events.emit(CLIENT_DISCONNECTING, ClientDisconnecting(type=current_type))

        try:
            await self._cleanup()
        except Exception as e:
            logger.error("Error during disconnect: %s", e)
            self.events.emit(CLIENT_ERROR, ClientError(error=e, context="disconnect"))
        finally:
            self._state = ClientState.DISCONNECTED

        if current_type is not None:
            self.events.emit(CLIENT_DISCONNECTED, ClientDisconnected(type=current_type))
        self.events.emit(
            CONNECTION_STATUS_CHANGED,
            ConnectionStatusChanged(is_connected=False, type=current_type),
        )

    def _detach(self) -> tuple[McpSession | None, TransportPlugin | None, MCPTransport | None]:
        """Drop references to the active connection and return them for release."""
        detached = (self._session, self._plugin, self._transport)
        self._session = None
        self._plugin = None
        self._transport = None
        self._uri = None
        self._stop_health_monitoring()
        self._clear_primitives_cache()
        return detached

    async def _release(
        self,
        session: McpSession | None,
        plugin: TransportPlugin | None,
        transport: MCPTransport | None,
    ) -> None:
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.warning("Error closing session: %s", e)
        # The plugin may already hold a newer transport
        if plugin is not None and plugin.transport is transport:
            try:
                await plugin.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting plugin: %s", e)

    async def _cleanup(self) -> None:
        await self._release(*self._detach())

    def _mark_connection_lost(self, reason: str) -> None:
        """Record an unexpected loss and release the connection in the background."""
        if self._state != ClientState.CONNECTED:
            return
        transport_type = self._plugin.transport_type if self._plugin else None
        logger.warning("Connection lost: %s", reason)
        self._state = ClientState.DISCONNECTED
        self.events.emit(
            CONNECTION_STATUS_CHANGED,
            ConnectionStatusChanged(is_connected=False, type=transport_type, error=reason),
        )

        task = asyncio.ensure_future(self._release(*self._detach()))
        self._release_tasks.add(task)

        def _done(t: asyncio.Task[None]) -> None:
            self._release_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("Error during cleanup after connection loss", exc_info=t.exception())

        task.add_done_callback(_done)

    def _on_websocket_disconnected(
        self, reason: str, code: int | None = None, details: str | None = None
    ) -> None:
        logger.info("WebSocket disconnection detected: %s (code: %s)", reason, code)
        message = f"WebSocket disconnected: {reason}"
        if code:
            message += f" (code: {code})"
        if details:
            message += f" - {details}"
        self._mark_connection_lost(message)

    # --- Data plane ---

    def _require_connection(self) -> tuple[McpSession, TransportPlugin]:
        if self._state != ClientState.CONNECTED or self._session is None or self._plugin is None:
            raise NotConnectedError("Not connected to any MCP server")
        return self._session, self._plugin

    async def call_tool(self, name: str, args: Mapping[str, Any] | None = None) -> MCPToolResult:
        """Invoke a tool on the connected server.

        Raises:
            NotConnectedError: If there is no active connection.
            MCPError: If the server rejects the call.
        """
        session, plugin = self._require_connection()
        arguments = dict(args or {})
        start = time.monotonic()
        self.events.emit(TOOL_CALL_STARTED, ToolCallStarted(tool_name=name, args=arguments))

        try:
            logger.debug("Calling tool: %s", name)
            result = await plugin.call_tool(session, name, arguments)
        except Exception as e:
            duration = time.monotonic() - start
            self.events.emit(
                TOOL_CALL_FAILED, ToolCallFailed(tool_name=name, error=e, duration=duration)
            )
            if not await self.is_healthy():
                self._mark_connection_lost("Connection lost during tool call")
            raise

        duration = time.monotonic() - start
        self.events.emit(
            TOOL_CALL_COMPLETED, ToolCallCompleted(tool_name=name, result=result, duration=duration)
        )
        return result

    async def get_primitives(self, force_refresh: bool = False) -> PrimitivesResponse:
        """Tools, resources and prompts of the connected server.

        Results are cached for five minutes; the cache is cleared on every
        connect and disconnect.

        Raises:
            NotConnectedError: If there is no active connection.
        """
        session, plugin = self._require_connection()

        if not force_refresh and self._is_cache_valid():
            logger.debug("Returning cached primitives")
            assert self._primitives_cache is not None
            return self._primitives_cache

        try:
            logger.debug("Fetching primitives from server...")
            primitives = await plugin.get_primitives(session)
        except Exception:
            if not await self.is_healthy():
                self._mark_connection_lost("Connection lost while getting primitives")
            raise

        response = PrimitivesResponse(
            tools=[NormalizedTool.from_value(p.value) for p in primitives if p.type == "tool"],
            resources=[p.value for p in primitives if p.type == "resource"],
            prompts=[p.value for p in primitives if p.type == "prompt"],
            timestamp=time.time(),
        )
        self._primitives_cache = response
        self._primitives_cache_time = time.monotonic()

        self.events.emit(
            TOOLS_LIST_UPDATED,
            ToolsListUpdated(tools=tuple(response.tools), type=plugin.transport_type),
        )
        logger.info(
            "Retrieved %d tools, %d resources, %d prompts",
            len(response.tools),
            len(response.resources),
            len(response.prompts),
        )
        return response

    def _clear_primitives_cache(self) -> None:
        self._primitives_cache = None
        self._primitives_cache_time = 0.0

    def _is_cache_valid(self) -> bool:
        return (
            self._primitives_cache is not None
            and time.monotonic() - self._primitives_cache_time < PRIMITIVES_CACHE_TTL
        )

    # --- Health ---

    async def is_healthy(self) -> bool:
        """Ask the active plugin. False when not connected or on error."""
        plugin = self._plugin
        if self._state != ClientState.CONNECTED or plugin is None:
            return False
        try:
            return await plugin.is_healthy()
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return False

    def is_connected(self) -> bool:
        return (
            self._state == ClientState.CONNECTED
            and self._plugin is not None
            and self._plugin.is_connected()
        )

    def _start_health_monitoring(self) -> None:
        self._stop_health_monitoring()
        interval = self._config.global_.health_check_interval / 1000
        if interval <= 0:
            return
        self._health_task = asyncio.create_task(self._health_loop(interval))

    def _stop_health_monitoring(self) -> None:
        task, self._health_task = self._health_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _health_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._state != ClientState.CONNECTED or self._plugin is None:
                return

            transport_type = self._plugin.transport_type
            try:
                healthy = await self.is_healthy()
            except Exception as e:
                logger.error("Health check error: %s", e)
                self.events.emit(CLIENT_ERROR, ClientError(error=e, context="health-check"))
                continue

            self.events.emit(
                CONNECTION_HEALTH_CHECK,
                ConnectionHealthCheck(healthy=healthy, type=transport_type, timestamp=time.time()),
            )
            if not healthy:
                logger.warning("Health check failed for %s", transport_type.value)
                self._mark_connection_lost("Health check failed")
                return

    # --- Introspection ---

    def get_connection_info(self) -> dict[str, Any]:
        plugin = self._plugin
        session = self._session
        server_info = session.server_info if session is not None else None
        return {
            "is_connected": self.is_connected(),
            "state": self._state.value,
            "type": plugin.transport_type if plugin else None,
            "uri": self._uri,
            "plugin_info": plugin.metadata.to_dict() if plugin else None,
            "server_info": (
                {"name": server_info.name, "version": server_info.version}
                if server_info is not None
                else None
            ),
        }

    def get_available_transports(self) -> list[TransportType]:
        return self._registry.list_available()

    async def switch_transport(self, request: ConnectionRequest) -> None:
        """Reconnect over ``request.type``, even when it is the current transport."""
        current_type = self._plugin.transport_type if self._plugin else None
        new_type = TransportType(request.type)

        if current_type == new_type:
            logger.info("Already using %s, reconnecting...", new_type.value)
            await self.disconnect()
        else:
            logger.info(
                "Switching from %s to %s", current_type.value if current_type else None, new_type.value
            )
            self.events.emit(
                CLIENT_PLUGIN_SWITCHED, ClientPluginSwitched(from_type=current_type, to_type=new_type)
            )

        await self.connect(request)

    @property
    def config(self) -> ClientConfig:
        return self._config

    def get_config(self) -> ClientConfig:
        """Copy of the current configuration."""
        return self._config.model_copy(deep=True)

    def update_config(self, overrides: Mapping[str, Any]) -> None:
        """Deep-merge ``overrides`` into the configuration.

        Global settings take effect for the next connect; the active
        connection is untouched. Plugin settings reach a plugin only at its
        first initialization, so changes for an already initialized plugin
        apply per connect through ``ConnectionRequest.config``.

        Raises:
            ConfigError: If the merged configuration does not validate.
        """
        self._config = merge_config(self._config, overrides)
        apply_log_level(self._config.global_.log_level)
        logger.info("Configuration updated")
