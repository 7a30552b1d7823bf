"""WebSocket transport and plugin.

One duplex socket carries JSON-RPC messages in both directions. Messages
sent before the socket opens are queued and flushed, in order, once it does.
Transport events (``open``, ``close``, ``error``, ``message``) are published
on the EventEmitter given at construction.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable, Sequence
from enum import IntEnum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from mcplink.config.defaults import get_default_plugin_config
from mcplink.config.schema import WebSocketPluginConfig
from mcplink.core.emitter import EventEmitter, Handler
from mcplink.core.errors import (
    ConnectionFailedError,
    ConnectionTimeoutError,
    MCPTransportError,
    ParseError,
)
from mcplink.core.events import (
    TRANSPORT_CLOSE,
    TRANSPORT_ERROR,
    TRANSPORT_MESSAGE,
    TRANSPORT_OPEN,
    McpEvent,
    TransportClosed,
)
from mcplink.core.types import Primitive, TransportType
from mcplink.core.uri import WEBSOCKET_SCHEMES, has_scheme
from mcplink.mcp.protocol import MCPToolResult
from mcplink.mcp.session import McpSession
from mcplink.mcp.transport import InboundQueue, MCPTransport
from mcplink.plugin.base import (
    ERROR_INVALID_URL,
    ERROR_PROTOCOL,
    ERROR_TIMEOUT,
    ERROR_UNREACHABLE,
    PluginMetadata,
    TransportPlugin,
)

logger = logging.getLogger(__name__)

# Seconds before an opening handshake is abandoned
CONNECT_TIMEOUT: float = 10.0

NORMAL_CLOSURE_CODE = 1000
NORMAL_CLOSURE_REASON = "Normal closure"

DisconnectionCallback = Callable[[str, "int | None", "str | None"], None]


class ReadyState(IntEnum):
    """Socket state, numbered like the browser WebSocket API."""

    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class WebSocketTransport(MCPTransport):
    """WebSocket transport with an outbound queue.

    Keep-alive pings are disabled; liveness is left to the MCP protocol.
    ``ping_interval``, ``pong_timeout`` and ``max_reconnect_attempts`` are
    stored for callers that inspect them and are not acted on.
    """

    def __init__(
        self,
        url: str,
        *,
        protocols: Sequence[str] = ("mcp-v1",),
        binary_type: str = "arraybuffer",
        connect_timeout: float = CONNECT_TIMEOUT,
        headers: dict[str, str] | None = None,
        ping_interval: int = 30000,
        pong_timeout: int = 5000,
        max_reconnect_attempts: int = 3,
        events: EventEmitter[McpEvent] | None = None,
    ) -> None:
        self._url = url
        self._protocols = list(protocols)
        self._binary_type = binary_type
        self._connect_timeout = connect_timeout
        self._headers = headers or {}
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self._events: EventEmitter[McpEvent] = events or EventEmitter()

        self._ws: ClientConnection | None = None
        self._ready_state = ReadyState.CLOSED
        self._outbound: deque[dict[str, Any]] = deque()
        self._inbound = InboundQueue()
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    @property
    def pending_count(self) -> int:
        """Messages waiting for the socket to open."""
        return len(self._outbound)

    @property
    def subprotocol(self) -> str | None:
        """Subprotocol the server selected, if any."""
        return self._ws.subprotocol if self._ws is not None else None

    def on(self, event: str, handler: Handler) -> None:
        self._events.on(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._events.off(event, handler)

    async def connect(self) -> None:
        """Open the socket and flush queued messages.

        Returns immediately when already open or opening.

        Raises:
            ConnectionTimeoutError: If the handshake exceeds connect_timeout.
            ConnectionFailedError: If the socket cannot be opened.
        """
        if self._ready_state in (ReadyState.OPEN, ReadyState.CONNECTING):
            logger.debug("WebSocket already connected or connecting")
            return

        logger.debug("Connecting to: %s", self._url)
        self._ready_state = ReadyState.CONNECTING
        self._inbound = InboundQueue()

        try:
            # wait_for cancels the pending open on timeout
            ws = await asyncio.wait_for(
                websockets.connect(
                    self._url,
                    subprotocols=self._protocols or None,
                    additional_headers=self._headers or None,
                    ping_interval=None,
                ),
                timeout=self._connect_timeout,
            )
        except TimeoutError:
            self._ready_state = ReadyState.CLOSED
            raise ConnectionTimeoutError(
                f"WebSocket connection timeout after {self._connect_timeout}s"
            ) from None
        except Exception as e:
            self._ready_state = ReadyState.CLOSED
            logger.error("WebSocket connection failed: %s", e)
            self._events.emit(TRANSPORT_ERROR, e)
            raise ConnectionFailedError(
                f"WebSocket connection failed: {e}", transport_type=TransportType.WEBSOCKET
            ) from e

        self._ws = ws
        self._ready_state = ReadyState.OPEN
        self._listener_task = asyncio.create_task(self._listen(ws))
        logger.debug("WebSocket connected (subprotocol=%s)", ws.subprotocol)
        self._events.emit(TRANSPORT_OPEN)
        await self._drain_outbound()

    async def _listen(self, ws: ClientConnection) -> None:
        """Background: read frames until the socket closes."""
        try:
            async for frame in ws:
                self._handle_frame(frame)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("WebSocket connection closed")
        except Exception as e:
            logger.exception("WebSocket listener error")
            self._events.emit(TRANSPORT_ERROR, e)
        finally:
            self._handle_closed(ws)

    def _handle_frame(self, frame: str | bytes) -> None:
        try:
            # Binary frames carry UTF-8 JSON whether surfaced as arraybuffer or blob
            text = frame.decode("utf-8") if isinstance(frame, bytes) else frame
            message = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error("Failed to parse WebSocket message: %s", e)
            self._events.emit(TRANSPORT_ERROR, ParseError(f"Failed to parse WebSocket message: {e}"))
            return

        if not isinstance(message, dict):
            logger.error("WebSocket message is not a JSON object")
            self._events.emit(TRANSPORT_ERROR, ParseError("WebSocket message is not a JSON object"))
            return

        self._inbound.put_nowait(message)
        self._events.emit(TRANSPORT_MESSAGE, message)

    def _handle_closed(self, ws: ClientConnection) -> None:
        code = ws.close_code
        reason = ws.close_reason or ""
        logger.debug("Disconnected: %s %s", code, reason)
        if self._ws is ws or self._ws is None:
            self._ws = None
            self._ready_state = ReadyState.CLOSED
            self._inbound.close(f"WebSocket closed ({code}) {reason}".rstrip())
        self._events.emit(TRANSPORT_CLOSE, TransportClosed(code=code, reason=reason))

    async def send(self, message: dict[str, Any]) -> None:
        """Send now when open, otherwise queue until the socket opens.

        Raises:
            MCPTransportError: If the socket is open and the send fails. The
                message stays queued.
        """
        if not self.is_connection_open():
            logger.debug("Queuing message (not connected)")
            self._outbound.append(message)
            return

        if self._outbound:
            # Earlier messages are still queued; keep FIFO order
            self._outbound.append(message)
            await self._drain_outbound()
            return

        assert self._ws is not None
        try:
            await self._ws.send(json.dumps(message, separators=(",", ":")))
        except Exception as e:
            logger.error("Failed to send message: %s", e)
            self._outbound.append(message)
            raise MCPTransportError(f"Failed to send WebSocket message: {e}") from e

    async def _drain_outbound(self) -> None:
        """Send queued messages in order; stop at the first failure."""
        if not self._outbound:
            return

        logger.debug("Processing %d queued messages", len(self._outbound))
        while self._outbound and self._ws is not None:
            message = self._outbound.popleft()
            try:
                await self._ws.send(json.dumps(message, separators=(",", ":")))
            except Exception as e:
                logger.error("Failed to send queued message: %s", e)
                self._outbound.appendleft(message)
                return

    async def receive(self) -> dict[str, Any]:
        return await self._inbound.get()

    async def close(self) -> None:
        """Mark CLOSED, then close the socket with a normal-closure frame."""
        logger.debug("Closing WebSocket connection")
        self._ready_state = ReadyState.CLOSED
        ws, self._ws = self._ws, None

        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE_CODE, reason=NORMAL_CLOSURE_REASON)
            except Exception as e:
                logger.debug("Error closing WebSocket: %s", e)

        task, self._listener_task = self._listener_task, None
        if task is not None:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._inbound.close("WebSocket transport closed")

    def is_connection_open(self) -> bool:
        return self._ready_state == ReadyState.OPEN and self._ws is not None

    @property
    def is_connected(self) -> bool:
        return self.is_connection_open()


class WebSocketPlugin(TransportPlugin):
    """WebSocket transport for the MCP protocol."""

    metadata = PluginMetadata(
        name="WebSocket Transport Plugin",
        version="1.0.0",
        transport_type=TransportType.WEBSOCKET,
        description="WebSocket transport for MCP protocol with real-time bidirectional communication",
        author="mcplink",
    )
    config_model = WebSocketPluginConfig
    error_prefix = "WebSocket Plugin: "
    _error_hints = {
        ERROR_TIMEOUT: "WebSocket connection timeout. The server may be slow or unreachable.",
        ERROR_INVALID_URL: "Invalid WebSocket URL format. Check the URI syntax.",
        ERROR_UNREACHABLE: (
            "WebSocket connection failed. Check if the server is running and accessible."
        ),
        ERROR_PROTOCOL: (
            "WebSocket protocol error. The server may not support the requested protocols."
        ),
    }

    def __init__(self, events: EventEmitter[McpEvent] | None = None) -> None:
        super().__init__(events)
        self._disconnection_callback: DisconnectionCallback | None = None

    def bind_events(self, events: EventEmitter[McpEvent]) -> None:
        self._events.off(TRANSPORT_CLOSE, self._handle_transport_close)
        super().bind_events(events)

    def is_supported(self, uri: str) -> bool:
        return has_scheme(uri, WEBSOCKET_SCHEMES)

    def get_default_config(self) -> dict[str, Any]:
        return get_default_plugin_config(TransportType.WEBSOCKET)

    def _create_transport(self, uri: str, config: WebSocketPluginConfig) -> WebSocketTransport:
        transport = WebSocketTransport(
            uri,
            protocols=config.protocols,
            binary_type=config.binary_type,
            connect_timeout=config.connect_timeout / 1000,
            ping_interval=config.ping_interval,
            pong_timeout=config.pong_timeout,
            max_reconnect_attempts=config.max_reconnect_attempts,
            events=self._events,
        )
        transport.on(TRANSPORT_CLOSE, self._handle_transport_close)
        return transport

    async def disconnect(self) -> None:
        self._events.off(TRANSPORT_CLOSE, self._handle_transport_close)
        await super().disconnect()

    def set_disconnection_callback(self, callback: DisconnectionCallback | None) -> None:
        """Call ``callback(reason, code, details)`` when the socket drops unexpectedly."""
        self._disconnection_callback = callback

    def _handle_transport_close(self, event: TransportClosed) -> None:
        if self._transport is None:
            # Closed by the plugin itself
            return
        logger.debug("Transport closed: %s %s", event.code, event.reason)
        self._handle_disconnection("WebSocket closed", event.code, event.reason)

    def _handle_disconnection(
        self, reason: str, code: int | None = None, details: str | None = None
    ) -> None:
        logger.debug("Handling disconnection: %s (code: %s, details: %s)", reason, code, details)
        if self._disconnection_callback is None:
            return
        try:
            self._disconnection_callback(reason, code, details)
        except Exception:
            logger.exception("Error in disconnection callback")

    def _socket_open(self) -> bool:
        transport = self._transport
        return isinstance(transport, WebSocketTransport) and transport.is_connection_open()

    async def is_healthy(self) -> bool:
        """True only while the socket is OPEN."""
        transport = self._transport
        if not isinstance(transport, WebSocketTransport):
            return False
        if transport.ready_state != ReadyState.OPEN:
            logger.warning("WebSocket not in OPEN state: %s", transport.ready_state.name)
            return False
        return True

    async def call_tool(
        self, session: McpSession, name: str, args: dict[str, Any] | None = None
    ) -> MCPToolResult:
        try:
            return await super().call_tool(session, name, args)
        except MCPTransportError as e:
            if not self._socket_open():
                raise ConnectionFailedError(
                    f"WebSocket connection lost during tool call: {name}",
                    transport_type=TransportType.WEBSOCKET,
                ) from e
            raise

    async def get_primitives(self, session: McpSession) -> list[Primitive]:
        try:
            return await super().get_primitives(session)
        except Exception as e:
            if self.is_connected() and not self._socket_open():
                raise ConnectionFailedError(
                    "WebSocket connection lost while getting primitives",
                    transport_type=TransportType.WEBSOCKET,
                ) from e
            raise
