"""MCP transport contract.

A transport moves JSON-RPC 2.0 messages (as Python dicts) between the client
and one server. Concrete transports live with their plugins:

- SSETransport (mcplink.plugin.sse): GET event stream in, POST out
- StreamableHttpTransport (mcplink.plugin.streamable_http): POST per message
- WebSocketTransport (mcplink.plugin.websocket): one duplex socket
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from mcplink.core.errors import MCPTransportError

logger = logging.getLogger(__name__)

# Maximum number of inbound messages buffered before the reader blocks
MAX_INBOUND_QUEUE: int = 1000


class MCPTransport(ABC):
    """Abstract base class for MCP transports.

    All transports provide async send/receive of JSON-RPC messages
    as Python dicts.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send a JSON-RPC message."""
        ...

    @abstractmethod
    async def receive(self) -> dict[str, Any]:
        """Receive a JSON-RPC message.

        Blocks until a message is available.

        Raises:
            MCPTransportError: If the transport is closed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while messages can flow."""
        ...

    async def __aenter__(self) -> MCPTransport:
        """Context manager entry - connect."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit - close."""
        await self.close()


class _Closed:
    """Queue marker: the inbound stream ended."""

    def __init__(self, reason: str) -> None:
        self.reason = reason


class InboundQueue:
    """Buffer between a transport's reader and ``receive()``.

    Once closed, every pending and future ``get()`` raises
    ``MCPTransportError`` with the close reason.
    """

    def __init__(self, maxsize: int = MAX_INBOUND_QUEUE) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | _Closed] = asyncio.Queue(maxsize)
        self._closed: _Closed | None = None

    async def put(self, message: dict[str, Any]) -> None:
        if self._closed is not None:
            logger.debug("Dropping inbound message after close")
            return
        await self._queue.put(message)

    def put_nowait(self, message: dict[str, Any]) -> None:
        if self._closed is not None:
            return
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Inbound queue full (%d), dropping message", self._queue.maxsize)

    def close(self, reason: str = "Transport closed") -> None:
        """Mark the stream ended and wake any waiting ``get()``."""
        if self._closed is not None:
            return
        self._closed = _Closed(reason)
        try:
            self._queue.put_nowait(self._closed)
        except asyncio.QueueFull:
            # A waiter cannot exist while the queue is full; get() checks _closed
            pass

    @property
    def closed(self) -> bool:
        return self._closed is not None

    def qsize(self) -> int:
        return self._queue.qsize()

    async def get(self) -> dict[str, Any]:
        if self._closed is not None and self._queue.empty():
            raise MCPTransportError(self._closed.reason)
        item = await self._queue.get()
        if isinstance(item, _Closed):
            # Leave the marker for other waiters
            self._queue.put_nowait(item)
            raise MCPTransportError(item.reason)
        return item
