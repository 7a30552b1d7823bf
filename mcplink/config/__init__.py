"""Configuration models, defaults and loading."""

from mcplink.config.defaults import (
    DEFAULT_SSE_URI,
    DEFAULT_STREAMABLE_HTTP_URI,
    DEFAULT_WEBSOCKET_URI,
    get_default_plugin_config,
    get_default_uri,
)
from mcplink.config.loader import load_config, merge_config
from mcplink.config.schema import (
    ClientConfig,
    GlobalConfig,
    PluginsConfig,
    SSEPluginConfig,
    StreamableHttpPluginConfig,
    WebSocketPluginConfig,
)

__all__ = [
    "ClientConfig",
    "GlobalConfig",
    "PluginsConfig",
    "SSEPluginConfig",
    "StreamableHttpPluginConfig",
    "WebSocketPluginConfig",
    "DEFAULT_SSE_URI",
    "DEFAULT_STREAMABLE_HTTP_URI",
    "DEFAULT_WEBSOCKET_URI",
    "get_default_plugin_config",
    "get_default_uri",
    "load_config",
    "merge_config",
]
