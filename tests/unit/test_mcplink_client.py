"""Tests for McpClient connection lifecycle, data plane and health handling.

Every plugin builds an in-memory ScriptedTransport instead of a network
transport, so the client, registry, plugins and MCP session are all real.
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from mcplink.client import ClientState, McpClient
from mcplink.core.emitter import EventEmitter
from mcplink.core.errors import (
    ConfigError,
    ConnectionFailedError,
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
    CLIENT_PLUGIN_SWITCHED,
    CONNECTION_HEALTH_CHECK,
    CONNECTION_STATUS_CHANGED,
    TOOL_CALL_COMPLETED,
    TOOL_CALL_FAILED,
    TOOL_CALL_STARTED,
    TOOLS_LIST_UPDATED,
)
from mcplink.core.types import ConnectionRequest, TransportType

SSE_URI = "http://localhost:3006/sse"
WS_URI = "ws://localhost:3006/message"
HTTP_URI = "http://localhost:3006/mcp"

NO_HEALTH_CHECKS: dict[str, Any] = {"global": {"healthCheckInterval": 0}}


@pytest.fixture
def client(servers, events: EventEmitter[Any]) -> McpClient:
    return McpClient(NO_HEALTH_CHECKS, events=events)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestNotConnected:
    """Operations before any connect()."""

    @pytest.mark.asyncio
    async def test_data_plane_requires_connection(self, client: McpClient) -> None:
        with pytest.raises(NotConnectedError):
            await client.call_tool("echo", {})
        with pytest.raises(NotConnectedError):
            await client.get_primitives()

    @pytest.mark.asyncio
    async def test_health_and_info_when_idle(self, client: McpClient) -> None:
        assert await client.is_healthy() is False
        assert client.is_connected() is False
        info = client.get_connection_info()
        assert info["state"] == "uninitialized"
        assert info["type"] is None
        assert info["server_info"] is None

    @pytest.mark.asyncio
    async def test_initialize_loads_builtin_plugins(self, client: McpClient) -> None:
        await client.initialize()

        assert client.state == ClientState.INITIALIZED
        assert client.get_available_transports() == [
            TransportType.SSE,
            TransportType.WEBSOCKET,
            TransportType.STREAMABLE_HTTP,
        ]

    def test_invalid_config_rejected(self) -> None:
        with pytest.raises(ConfigError):
            McpClient({"global": {"timeout": 0}})


class TestConnect:
    """Tests for McpClient.connect()."""

    @pytest.mark.asyncio
    async def test_connect_emits_lifecycle_events(
        self, client: McpClient, servers, recorder
    ) -> None:
        seen = recorder(CLIENT_CONNECTING, CLIENT_CONNECTED, CONNECTION_STATUS_CHANGED)

        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))

        assert [name for name, _ in seen] == [
            CLIENT_CONNECTING,
            CLIENT_CONNECTED,
            CONNECTION_STATUS_CHANGED,
        ]
        assert seen[1][1].uri == SSE_URI
        assert seen[2][1].is_connected is True
        assert client.state == ClientState.CONNECTED
        assert client.is_connected() is True

        info = client.get_connection_info()
        assert info["type"] == TransportType.SSE
        assert info["uri"] == SSE_URI
        assert info["server_info"] == {"name": "fake-server", "version": "1.0.0"}

        initialize = servers.last().sent[0]
        assert initialize["params"]["clientInfo"]["name"] == "mcp-client-sse"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_transport_type_given_as_string(self, client: McpClient) -> None:
        await client.connect(ConnectionRequest(WS_URI, "websocket"))

        assert client.get_connection_info()["type"] == TransportType.WEBSOCKET
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_same_request_is_noop(self, client: McpClient, servers) -> None:
        request = ConnectionRequest(SSE_URI, TransportType.SSE)
        await client.connect(request)
        await client.connect(request)

        assert len(servers.created) == 1
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_new_target_replaces_connection(
        self, client: McpClient, servers
    ) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        first = servers.last()

        await client.connect(ConnectionRequest("http://localhost:4000/sse", TransportType.SSE))

        assert first.closed is True
        assert len(servers.created) == 2
        assert client.get_connection_info()["uri"] == "http://localhost:4000/sse"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_attempt(
        self, client: McpClient, servers
    ) -> None:
        request = ConnectionRequest(SSE_URI, TransportType.SSE)

        await asyncio.gather(client.connect(request), client.connect(request))

        assert len(servers.created) == 1
        assert client.state == ClientState.CONNECTED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_transport_failure_is_enriched(
        self, client: McpClient, servers, recorder
    ) -> None:
        seen = recorder(CLIENT_ERROR, CONNECTION_STATUS_CHANGED)
        servers.failures[TransportType.SSE] = ConnectionRefusedError("refused")

        with pytest.raises(ConnectionFailedError) as exc_info:
            await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))

        assert str(exc_info.value) == (
            "SSE Plugin: SSE connection failed. Check if the server is running and accessible."
        )
        assert client.state == ClientState.ERROR
        assert client.session is None
        assert client.registry.get_plugin("sse").transport is None
        assert seen[0][0] == CLIENT_ERROR
        assert seen[0][1].context == "connection"
        assert seen[1][1].is_connected is False
        assert seen[1][1].error == str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rejected_handshake(self, client: McpClient, servers) -> None:
        def reject(params: dict[str, Any]) -> dict[str, Any]:
            raise MCPError("server refused client", code=-32600)

        servers.handlers[TransportType.SSE] = {"initialize": reject}

        with pytest.raises(ConnectionFailedError, match="SSE Plugin: server refused client"):
            await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        assert servers.last().closed is True

    @pytest.mark.asyncio
    async def test_unsupported_uri(self, client: McpClient, servers) -> None:
        with pytest.raises(InvalidUriError):
            await client.connect(ConnectionRequest(WS_URI, TransportType.SSE))

        assert servers.created == []
        assert client.state == ClientState.ERROR

    @pytest.mark.asyncio
    async def test_connect_after_failure(self, client: McpClient, servers) -> None:
        servers.failures[TransportType.SSE] = ConnectionRefusedError("refused")
        with pytest.raises(ConnectionFailedError):
            await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))

        del servers.failures[TransportType.SSE]
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))

        assert client.state == ClientState.CONNECTED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_request_config_applies_to_one_connection(
        self, client: McpClient, servers
    ) -> None:
        await client.initialize()
        plugin = client.registry.get_plugin("sse")

        with patch.object(plugin, "initialize", wraps=plugin.initialize) as initialize:
            await client.connect(
                ConnectionRequest(SSE_URI, TransportType.SSE, config={"connectionTimeout": 1234})
            )
            await client.disconnect()
            await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))

        assert initialize.await_count == 1
        assert [config.connection_timeout for config in servers.configs] == [1234, 5000]
        assert plugin.config.connection_timeout == 5000
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_invalid_request_config(self, client: McpClient, servers) -> None:
        with pytest.raises(ConfigError, match="Invalid connection config"):
            await client.connect(
                ConnectionRequest(SSE_URI, TransportType.SSE, config={"connectionTimeout": -1})
            )

        assert servers.created == []
        assert client.state == ClientState.ERROR

    @pytest.mark.asyncio
    async def test_connect_without_request_uses_configured_defaults(
        self, servers, events: EventEmitter[Any]
    ) -> None:
        client = McpClient(
            {**NO_HEALTH_CHECKS, "defaultTransport": "websocket", "defaultUri": WS_URI},
            events=events,
        )

        await client.connect()

        assert [(t, uri) for t, uri, _ in servers.created] == [(TransportType.WEBSOCKET, WS_URI)]
        assert client.get_connection_info()["uri"] == WS_URI
        await client.disconnect()


class TestStreamableHttpFallback:
    """Tests for the Streamable HTTP -> SSE fallback."""

    @pytest.mark.asyncio
    async def test_falls_back_to_sse_when_enabled(
        self, servers, events: EventEmitter[Any], recorder
    ) -> None:
        seen = recorder(CLIENT_PLUGIN_SWITCHED)
        client = McpClient(
            {**NO_HEALTH_CHECKS, "plugins": {"streamable-http": {"fallbackToSSE": True}}},
            events=events,
        )
        servers.failures[TransportType.STREAMABLE_HTTP] = MCPTransportError("HTTP 404")

        await client.connect(ConnectionRequest(HTTP_URI, TransportType.STREAMABLE_HTTP))

        assert len(seen) == 1
        assert seen[0][1].from_type == TransportType.STREAMABLE_HTTP
        assert seen[0][1].to_type == TransportType.SSE
        assert [(t, uri) for t, uri, _ in servers.created] == [
            (TransportType.STREAMABLE_HTTP, HTTP_URI),
            (TransportType.SSE, HTTP_URI),
        ]
        assert client.get_connection_info()["type"] == TransportType.SSE
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_no_fallback_by_default(
        self, client: McpClient, servers, recorder
    ) -> None:
        seen = recorder(CLIENT_PLUGIN_SWITCHED)
        servers.failures[TransportType.STREAMABLE_HTTP] = MCPTransportError("HTTP 404")

        with pytest.raises(ConnectionFailedError, match="StreamableHttpPlugin: .*404"):
            await client.connect(ConnectionRequest(HTTP_URI, TransportType.STREAMABLE_HTTP))

        assert seen == []
        assert len(servers.created) == 1


class TestDisconnect:
    """Tests for McpClient.disconnect()."""

    @pytest.mark.asyncio
    async def test_disconnect_emits_and_releases(
        self, client: McpClient, servers, recorder
    ) -> None:
        await client.connect(ConnectionRequest(WS_URI, TransportType.WEBSOCKET))
        seen = recorder(CLIENT_DISCONNECTING, CLIENT_DISCONNECTED, CONNECTION_STATUS_CHANGED)

        await client.disconnect()

        assert [name for name, _ in seen] == [
            CLIENT_DISCONNECTING,
            CLIENT_DISCONNECTED,
            CONNECTION_STATUS_CHANGED,
        ]
        assert seen[0][1].type == TransportType.WEBSOCKET
        assert servers.last().closed is True
        assert client.state == ClientState.DISCONNECTED
        assert client.registry.get_plugin("websocket").transport is None

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, client: McpClient, recorder) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        await client.disconnect()
        seen = recorder(CLIENT_DISCONNECTED, CONNECTION_STATUS_CHANGED)

        await client.disconnect()

        assert seen == []

    @pytest.mark.asyncio
    async def test_disconnect_swallows_close_errors(
        self, client: McpClient, servers
    ) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        servers.last().close = AsyncMock(side_effect=RuntimeError("close failed"))

        await client.disconnect()

        assert client.state == ClientState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_aborts_in_flight_connect(
        self, client: McpClient, servers
    ) -> None:
        # initialize is never answered
        servers.handlers[TransportType.SSE] = {"initialize": lambda params: None}
        connecting = asyncio.create_task(
            client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        )
        while not servers.created:
            await asyncio.sleep(0)
        await _settle()
        assert client.state == ClientState.CONNECTING

        await client.disconnect()

        with pytest.raises(ConnectionFailedError, match="aborted"):
            await connecting
        assert client.state == ClientState.DISCONNECTED
        assert servers.last().closed is True


class TestDataPlane:
    """Tests for call_tool() and get_primitives()."""

    @pytest.mark.asyncio
    async def test_call_tool_events(self, client: McpClient, recorder) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        seen = recorder(TOOL_CALL_STARTED, TOOL_CALL_COMPLETED)

        result = await client.call_tool("echo", {"message": "hi"})

        assert result.to_text() == "hi"
        assert [name for name, _ in seen] == [TOOL_CALL_STARTED, TOOL_CALL_COMPLETED]
        assert seen[0][1].args == {"message": "hi"}
        assert seen[1][1].result is result
        assert seen[1][1].duration >= 0
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_call_tool_failure(
        self, client: McpClient, servers, recorder
    ) -> None:
        def broken(params: dict[str, Any]) -> dict[str, Any]:
            raise MCPError("tool exploded", code=-32603)

        servers.handlers[TransportType.SSE] = {"tools/call": broken}
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        seen = recorder(TOOL_CALL_FAILED)

        with pytest.raises(MCPError, match="tool exploded"):
            await client.call_tool("echo", {})

        assert seen[0][1].tool_name == "echo"
        assert isinstance(seen[0][1].error, MCPError)
        # The plugin still holds its transport, so the connection stays up
        assert client.state == ClientState.CONNECTED
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_failure_on_unhealthy_connection_marks_it_lost(
        self, client: McpClient, servers, recorder
    ) -> None:
        def broken(params: dict[str, Any]) -> dict[str, Any]:
            raise MCPError("tool exploded")

        servers.handlers[TransportType.WEBSOCKET] = {"tools/call": broken}
        await client.connect(ConnectionRequest(WS_URI, TransportType.WEBSOCKET))
        seen = recorder(CONNECTION_STATUS_CHANGED)

        with patch.object(
            client.registry.get_plugin("websocket"), "is_healthy", AsyncMock(return_value=False)
        ):
            with pytest.raises(MCPError):
                await client.call_tool("echo", {})
        await _settle()

        assert client.state == ClientState.DISCONNECTED
        assert seen[0][1].error == "Connection lost during tool call"
        assert servers.last().closed is True

    @pytest.mark.asyncio
    async def test_primitives_cached_until_forced(
        self, client: McpClient, servers, recorder
    ) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        seen = recorder(TOOLS_LIST_UPDATED)

        first = await client.get_primitives()
        second = await client.get_primitives()
        third = await client.get_primitives(force_refresh=True)

        assert second is first
        assert third is not first
        assert servers.last().methods().count("tools/list") == 2
        assert len(seen) == 2
        assert seen[0][1].type == TransportType.SSE

        assert [t.name for t in first.tools] == ["echo"]
        assert first.tools[0].input_schema["type"] == "object"
        assert first.resources[0]["uri"] == "file:///readme.md"
        assert first.prompts[0]["name"] == "greet"
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_cache_cleared_by_reconnect(
        self, client: McpClient, servers
    ) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        await client.get_primitives()
        await client.disconnect()

        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        await client.get_primitives()

        assert servers.last().methods().count("tools/list") == 1
        await client.disconnect()


class TestConnectionLoss:
    """Tests for unexpected disconnection and health monitoring."""

    @pytest.mark.asyncio
    async def test_websocket_drop_marks_connection_lost(
        self, client: McpClient, servers, recorder
    ) -> None:
        await client.connect(ConnectionRequest(WS_URI, TransportType.WEBSOCKET))
        seen = recorder(CONNECTION_STATUS_CHANGED)

        client.registry.get_plugin("websocket")._handle_disconnection(
            "WebSocket closed", 1006, "server went away"
        )
        await _settle()

        assert client.state == ClientState.DISCONNECTED
        assert seen[0][1].is_connected is False
        assert seen[0][1].error == (
            "WebSocket disconnected: WebSocket closed (code: 1006) - server went away"
        )
        assert servers.last().closed is True
        assert client.registry.get_plugin("websocket").transport is None

    @pytest.mark.asyncio
    async def test_failed_health_check_marks_connection_lost(
        self, servers, events: EventEmitter[Any], recorder
    ) -> None:
        client = McpClient({"global": {"healthCheckInterval": 10}}, events=events)
        seen = recorder(CONNECTION_HEALTH_CHECK, CONNECTION_STATUS_CHANGED)
        checked = asyncio.Event()
        events.on(CONNECTION_HEALTH_CHECK, lambda payload: checked.set())

        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        with patch.object(
            client.registry.get_plugin("sse"), "is_healthy", AsyncMock(return_value=False)
        ):
            await asyncio.wait_for(checked.wait(), timeout=2.0)
        await _settle()

        health = [payload for name, payload in seen if name == CONNECTION_HEALTH_CHECK]
        assert health[0].healthy is False
        assert health[0].type == TransportType.SSE
        assert seen[-1][1].error == "Health check failed"
        assert client.state == ClientState.DISCONNECTED


class TestSwitchAndConfig:
    """Tests for switch_transport() and configuration updates."""

    @pytest.mark.asyncio
    async def test_switch_to_other_transport(self, client: McpClient, recorder) -> None:
        await client.connect(ConnectionRequest(SSE_URI, TransportType.SSE))
        seen = recorder(CLIENT_PLUGIN_SWITCHED)

        await client.switch_transport(ConnectionRequest(WS_URI, TransportType.WEBSOCKET))

        assert seen[0][1].from_type == TransportType.SSE
        assert seen[0][1].to_type == TransportType.WEBSOCKET
        assert client.get_connection_info()["type"] == TransportType.WEBSOCKET
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_switch_to_same_transport_reconnects(
        self, client: McpClient, servers
    ) -> None:
        request = ConnectionRequest(SSE_URI, TransportType.SSE)
        await client.connect(request)

        await client.switch_transport(request)

        assert len(servers.created) == 2
        assert servers.created[0][2].closed is True
        assert client.state == ClientState.CONNECTED
        await client.disconnect()

    def test_update_config_merges(self, client: McpClient) -> None:
        client.update_config({"global": {"timeout": 5000}, "plugins": {"sse": {"readTimeout": 100}}})

        assert client.config.global_.timeout == 5000
        assert client.config.global_.health_check_interval == 0
        assert client.config.plugins.sse.read_timeout == 100

    def test_invalid_update_keeps_previous_config(self, client: McpClient) -> None:
        with pytest.raises(ConfigError):
            client.update_config({"global": {"timeout": -1}})
        assert client.config.global_.timeout == 30000

    def test_get_config_returns_copy(self, client: McpClient) -> None:
        copy = client.get_config()
        copy.global_.timeout = 1

        assert client.config.global_.timeout == 30000
