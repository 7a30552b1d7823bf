"""MCP (Model Context Protocol) protocol layer.

Provides the JSON-RPC session that rides on any transport, the protocol
data types, and the transport contract implemented by the plugins.

Usage:
    from mcplink.mcp import McpSession

    session = McpSession(transport)
    await session.connect()
    tools = await session.list_tools()
    result = await session.call_tool("echo", {"message": "hello"})
"""

from mcplink.mcp.protocol import (
    PROTOCOL_VERSION,
    MCPClientInfo,
    MCPPrompt,
    MCPPromptArgument,
    MCPResource,
    MCPServerInfo,
    MCPTool,
    MCPToolResult,
)
from mcplink.mcp.session import McpSession
from mcplink.mcp.sse import SSEDecoder, SSEEvent, iter_sse_events
from mcplink.mcp.transport import InboundQueue, MCPTransport

__all__ = [
    "PROTOCOL_VERSION",
    "InboundQueue",
    "MCPClientInfo",
    "MCPPrompt",
    "MCPPromptArgument",
    "MCPResource",
    "MCPServerInfo",
    "MCPTool",
    "MCPToolResult",
    "MCPTransport",
    "McpSession",
    "SSEDecoder",
    "SSEEvent",
    "iter_sse_events",
]
