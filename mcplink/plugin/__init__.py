"""Transport plugins and the registry that owns them.

Usage:
    from mcplink.plugin import PluginRegistry

    registry = PluginRegistry()
    registry.load_default_plugins()
    plugin = await registry.get_initialized_plugin("websocket")
"""

from mcplink.plugin.base import PluginMetadata, TransportPlugin, classify_error
from mcplink.plugin.registry import DEFAULT_PLUGIN_TYPES, PluginRegistry, create_plugin
from mcplink.plugin.sse import SSEPlugin, SSETransport
from mcplink.plugin.streamable_http import StreamableHttpPlugin, StreamableHttpTransport
from mcplink.plugin.websocket import ReadyState, WebSocketPlugin, WebSocketTransport

__all__ = [
    "DEFAULT_PLUGIN_TYPES",
    "PluginMetadata",
    "PluginRegistry",
    "ReadyState",
    "SSEPlugin",
    "SSETransport",
    "StreamableHttpPlugin",
    "StreamableHttpTransport",
    "TransportPlugin",
    "WebSocketPlugin",
    "WebSocketTransport",
    "classify_error",
    "create_plugin",
]
