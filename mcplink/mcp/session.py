"""MCP session over a connected transport.

The McpSession handles the MCP protocol lifecycle:
1. Open the transport
2. Perform initialization handshake
3. Discover tools, resources and prompts
4. Execute tool calls
5. Clean shutdown

Requests may run concurrently: a single reader task owns ``receive()`` and
routes each response to the request with the matching id. Server
notifications and responses with unknown ids are logged and discarded.

Usage:
    session = McpSession(transport)
    await session.connect(timeout=30.0)
    tools = await session.list_tools()
    result = await session.call_tool("echo", {"message": "hello"})
    await session.close()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from mcplink.core.errors import ConnectionTimeoutError, MCPError, MCPTransportError
from mcplink.mcp.protocol import (
    PROTOCOL_VERSION,
    MCPClientInfo,
    MCPPrompt,
    MCPResource,
    MCPServerInfo,
    MCPTool,
    MCPToolResult,
)
from mcplink.mcp.transport import MCPTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound on pages fetched by one list call; stops servers that loop cursors
MAX_LIST_PAGES: int = 100


class McpSession:
    """Client side of one MCP session.

    Attributes:
        server_info: Information about the connected server.
    """

    def __init__(
        self,
        transport: MCPTransport,
        client_info: MCPClientInfo | None = None,
        request_timeout: float = 30.0,
    ):
        """Initialize the session.

        Args:
            transport: Transport layer for communication.
            client_info: Client identification (defaults to mcplink).
            request_timeout: Seconds to wait for each response. 0 waits forever.
        """
        self._transport = transport
        self._client_info = client_info or MCPClientInfo()
        self._request_timeout = request_timeout
        self._request_id = 0
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._server_info: MCPServerInfo | None = None
        self._initialized = False

    @property
    def transport(self) -> MCPTransport:
        return self._transport

    async def connect(self, timeout: float = 30.0) -> None:
        """Open the transport and perform the initialization handshake.

        Args:
            timeout: Maximum time to wait for connection and initialization.
                     Default 30 seconds. Use 0 for no timeout.

        Raises:
            ConnectionTimeoutError: If the handshake does not finish in time.
            MCPError: If the server rejects initialization.
            MCPTransportError: If the transport fails.
        """

        async def _do_connect() -> None:
            await self._transport.connect()
            self._start_reader()
            await self._initialize()

        try:
            if timeout > 0:
                await asyncio.wait_for(_do_connect(), timeout=timeout)
            else:
                await _do_connect()
        except TimeoutError:
            await self._cleanup_after_failure()
            raise ConnectionTimeoutError(
                f"MCP connection timed out after {timeout}s"
            ) from None
        except BaseException:
            await self._cleanup_after_failure()
            raise

    async def _cleanup_after_failure(self) -> None:
        try:
            await self.close()
        except Exception as cleanup_err:
            logger.warning(
                "Failed to close transport during connect cleanup: %s", cleanup_err
            )

    async def close(self) -> None:
        """Stop the reader, fail outstanding requests and close the transport."""
        self._initialized = False
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._fail_pending(MCPTransportError("Session closed"))
        await self._transport.close()

    async def ping(self) -> float:
        """Ping the server to check connectivity and measure latency.

        Returns:
            Round-trip time in milliseconds.

        Raises:
            MCPError: If server doesn't respond or returns error.
        """
        start = time.perf_counter()
        await self._call("ping")
        return (time.perf_counter() - start) * 1000

    async def _initialize(self) -> None:
        """Send initialize, record server info, then send the initialized notification."""
        response = await self._call(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": self._client_info.to_dict(),
            },
        )
        self._server_info = MCPServerInfo.from_dict(response)
        await self._notify("notifications/initialized")
        self._initialized = True
        logger.debug(
            "Initialized MCP session with %s %s",
            self._server_info.name,
            self._server_info.version,
        )

    # --- Request routing ---

    def _start_reader(self) -> None:
        if self._reader_task is None or self._reader_task.done():
            self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        """Route inbound messages to waiting requests until the transport ends."""
        try:
            while True:
                message = await self._transport.receive()
                self._dispatch(message)
        except MCPTransportError as e:
            logger.debug("MCP reader stopped: %s", e)
            self._fail_pending(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("MCP reader failed")
            self._fail_pending(MCPTransportError(f"Reader failed: {e}"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        # Notifications have "method" but no "id"
        if "id" not in message and "method" in message:
            logger.debug("Discarded MCP notification: %s", message.get("method"))
            return

        response_id = message.get("id")
        if response_id is None:
            # Non-compliant servers answer notifications with a null-id error
            logger.debug(
                "Discarded null-id response: %s",
                (message.get("error") or {}).get("message", "unknown"),
            )
            return

        if "method" in message:
            # Server-to-client request; nothing here answers those
            logger.debug("Ignoring server request: %s", message.get("method"))
            return

        future = self._pending.get(response_id) if isinstance(response_id, int) else None
        if future is None:
            logger.warning("Discarded response with unknown id: %r", response_id)
            return
        if not future.done():
            future.set_result(message)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make JSON-RPC call and wait for response.

        Args:
            method: RPC method name.
            params: Method parameters. If None or empty, params field is omitted.

        Returns:
            The 'result' field from the response.

        Raises:
            MCPError: If the server returns an error or does not answer in time.
            MCPTransportError: If the transport fails or closes first.
        """
        if self._reader_task is None or self._reader_task.done():
            raise MCPTransportError("Session is not connected")

        self._request_id += 1
        request_id = self._request_id
        request: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
        }
        if params:
            request["params"] = params

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._transport.send(request)
            if self._request_timeout > 0:
                response = await asyncio.wait_for(future, timeout=self._request_timeout)
            else:
                response = await future
        except TimeoutError:
            raise MCPError(
                f"Request '{method}' timed out after {self._request_timeout}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

        if "error" in response:
            error = response["error"] or {}
            raise MCPError(
                message=error.get("message", "Unknown error"),
                code=error.get("code"),
            )

        return response.get("result") or {}

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send notification (no response expected)."""
        notification: dict[str, Any] = {
            "jsonrpc": "2.0",
            "method": method,
        }
        if params:
            notification["params"] = params
        await self._transport.send(notification)

    # --- Primitives ---

    async def _list_paginated(
        self, method: str, key: str, parse: Callable[[dict[str, Any]], T]
    ) -> list[T]:
        """Follow ``nextCursor`` until the server stops returning one."""
        items: list[T] = []
        cursor: str | None = None

        for _ in range(MAX_LIST_PAGES):
            params: dict[str, Any] | None = {"cursor": cursor} if cursor else None
            result = await self._call(method, params)
            items.extend(parse(entry) for entry in result.get(key) or [])

            cursor = result.get("nextCursor")
            if not cursor:
                return items

        logger.warning("Stopped paginating %s after %d pages", method, MAX_LIST_PAGES)
        return items

    async def list_tools(self) -> list[MCPTool]:
        """Discover available tools from the server (all pages)."""
        return await self._list_paginated("tools/list", "tools", MCPTool.from_dict)

    async def list_resources(self) -> list[MCPResource]:
        """Discover available resources from the server (all pages)."""
        return await self._list_paginated("resources/list", "resources", MCPResource.from_dict)

    async def list_prompts(self) -> list[MCPPrompt]:
        """Discover available prompts from the server (all pages)."""
        return await self._list_paginated("prompts/list", "prompts", MCPPrompt.from_dict)

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> MCPToolResult:
        """Invoke a tool on the server.

        Args:
            name: Name of the tool to invoke.
            arguments: Tool arguments (empty dict if None).

        Returns:
            The tool result.

        Raises:
            MCPError: If the server returns an error.
        """
        result = await self._call(
            "tools/call",
            {
                "name": name,
                "arguments": arguments or {},
            },
        )
        return MCPToolResult.from_dict(result)

    @property
    def server_info(self) -> MCPServerInfo | None:
        """Get server information (available after initialization)."""
        return self._server_info

    @property
    def capabilities(self) -> dict[str, Any]:
        """Capabilities the server advertised, empty before initialization."""
        return self._server_info.capabilities if self._server_info else {}

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_connected(self) -> bool:
        """True after initialization while the transport is connected."""
        return self._initialized and self._transport.is_connected
