"""Shared pytest fixtures for mcplink tests."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from mcplink.core.emitter import EventEmitter
from mcplink.core.errors import MCPError
from mcplink.core.types import TransportType
from mcplink.mcp.protocol import PROTOCOL_VERSION
from mcplink.mcp.transport import InboundQueue, MCPTransport
from mcplink.plugin.base import TransportPlugin
from mcplink.plugin.sse import SSEPlugin
from mcplink.plugin.streamable_http import StreamableHttpPlugin
from mcplink.plugin.websocket import WebSocketPlugin

Handler = Callable[[dict[str, Any]], dict[str, Any] | None]

ALL_CAPABILITIES: dict[str, Any] = {"tools": {}, "resources": {}, "prompts": {}}


class ScriptedTransport(MCPTransport):
    """In-memory MCP server.

    Requests are answered from a method -> handler map. A handler returning
    None leaves the request unanswered; raising MCPError answers with a
    JSON-RPC error.
    """

    def __init__(
        self,
        handlers: dict[str, Handler] | None = None,
        capabilities: dict[str, Any] | None = None,
        server_name: str = "fake-server",
    ) -> None:
        self.capabilities = ALL_CAPABILITIES if capabilities is None else capabilities
        self.server_name = server_name
        self.handlers: dict[str, Handler] = {
            "initialize": self._initialize,
            "ping": lambda params: {},
        }
        self.handlers.update(handlers or {})
        self.sent: list[dict[str, Any]] = []
        self.connected = False
        self.closed = False
        self._inbound = InboundQueue()

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": self.capabilities,
            "serverInfo": {"name": self.server_name, "version": "1.0.0"},
        }

    def inject(self, message: dict[str, Any]) -> None:
        """Deliver an unsolicited message to the client."""
        self._inbound.put_nowait(message)

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent if "method" in m]

    async def connect(self) -> None:
        self.connected = True

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(message)
        if "id" not in message:
            return

        method = message["method"]
        handler = self.handlers.get(method)
        if handler is None:
            self._inbound.put_nowait({
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            })
            return

        try:
            result = handler(message.get("params") or {})
        except MCPError as e:
            self._inbound.put_nowait({
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": e.code, "message": e.message},
            })
            return

        if result is not None:
            self._inbound.put_nowait({"jsonrpc": "2.0", "id": message["id"], "result": result})

    async def receive(self) -> dict[str, Any]:
        return await self._inbound.get()

    async def close(self) -> None:
        self.connected = False
        self.closed = True
        self._inbound.close("Scripted transport closed")

    @property
    def is_connected(self) -> bool:
        return self.connected


def echo_tool_server(**overrides: Handler) -> dict[str, Handler]:
    """Handlers for a server with one ``echo`` tool, one resource and one prompt."""
    handlers: dict[str, Handler] = {
        "tools/list": lambda params: {
            "tools": [{
                "name": "echo",
                "description": "Echo a message",
                "inputSchema": {"type": "object", "properties": {"message": {"type": "string"}}},
            }]
        },
        "resources/list": lambda params: {
            "resources": [{"uri": "file:///readme.md", "name": "readme", "mimeType": "text/markdown"}]
        },
        "prompts/list": lambda params: {
            "prompts": [{"name": "greet", "arguments": [{"name": "who", "required": True}]}]
        },
        "tools/call": lambda params: {
            "content": [{"type": "text", "text": params["arguments"].get("message", "")}]
        },
    }
    handlers.update(overrides)
    return handlers


@pytest.fixture
def events() -> EventEmitter[Any]:
    """Fresh event bus."""
    return EventEmitter()


@pytest.fixture
def recorder(events: EventEmitter[Any]) -> Callable[..., list[tuple[str, Any]]]:
    """Subscribe to event names on ``events``; returns the shared (name, payload) log."""
    seen: list[tuple[str, Any]] = []

    def record(*names: str) -> list[tuple[str, Any]]:
        for name in names:
            events.on(name, lambda payload, name=name: seen.append((name, payload)))
        return seen

    return record


@pytest.fixture
def scripted_transport() -> ScriptedTransport:
    return ScriptedTransport(echo_tool_server())


@pytest.fixture
def make_transport() -> Callable[..., ScriptedTransport]:
    """Factory: echo server handlers with ``handlers`` overriding by method."""

    def make(
        handlers: dict[str, Handler] | None = None,
        capabilities: dict[str, Any] | None = None,
    ) -> ScriptedTransport:
        return ScriptedTransport(echo_tool_server(**(handlers or {})), capabilities)

    return make


class FakeServers:
    """Patches every plugin to build ScriptedTransports.

    ``handlers`` and ``failures`` are keyed by transport type; a failure is
    raised from the transport's connect().
    """

    def __init__(
        self, monkeypatch: pytest.MonkeyPatch, make_transport: Callable[..., ScriptedTransport]
    ) -> None:
        self.make_transport = make_transport
        self.handlers: dict[TransportType, dict[str, Handler]] = {}
        self.failures: dict[TransportType, BaseException] = {}
        self.created: list[tuple[TransportType, str, ScriptedTransport]] = []
        self.configs: list[Any] = []
        for cls in (SSEPlugin, WebSocketPlugin, StreamableHttpPlugin):
            monkeypatch.setattr(
                cls,
                "_create_transport",
                lambda plugin, uri, config: self.build(plugin, uri, config),
            )

    def build(self, plugin: TransportPlugin, uri: str, config: Any = None) -> ScriptedTransport:
        transport_type = plugin.transport_type
        transport = self.make_transport(self.handlers.get(transport_type))
        failure = self.failures.get(transport_type)
        if failure is not None:
            transport.connect = AsyncMock(side_effect=failure)
        self.created.append((transport_type, uri, transport))
        self.configs.append(config)
        return transport

    def last(self) -> ScriptedTransport:
        return self.created[-1][2]


@pytest.fixture
def servers(
    monkeypatch: pytest.MonkeyPatch, make_transport: Callable[..., ScriptedTransport]
) -> FakeServers:
    """Plugins connect to in-memory echo servers instead of the network."""
    return FakeServers(monkeypatch, make_transport)
