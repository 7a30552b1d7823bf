"""Plugin registry: one transport plugin per TransportType.

The registry owns the type -> plugin map and the set of initialized types.
Initialization is lazy and happens at most once per type, even when several
callers ask concurrently.

Example:
    registry = PluginRegistry(events)
    registry.load_default_plugins()
    plugin = await registry.get_initialized_plugin(TransportType.WEBSOCKET)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from mcplink.core.emitter import EventEmitter
from mcplink.core.errors import PluginLoadError, PluginNotFoundError
from mcplink.core.events import (
    REGISTRY_PLUGIN_REGISTERED,
    REGISTRY_PLUGIN_UNREGISTERED,
    REGISTRY_PLUGINS_LOADED,
    McpEvent,
    PluginRegistered,
    PluginsLoaded,
    PluginUnregistered,
)
from mcplink.core.types import TransportType
from mcplink.plugin.base import TransportPlugin
from mcplink.plugin.sse import SSEPlugin
from mcplink.plugin.streamable_http import StreamableHttpPlugin
from mcplink.plugin.websocket import WebSocketPlugin

logger = logging.getLogger(__name__)

# Registration order of the built-in plugins
DEFAULT_PLUGIN_TYPES: tuple[TransportType, ...] = (
    TransportType.SSE,
    TransportType.WEBSOCKET,
    TransportType.STREAMABLE_HTTP,
)


def create_plugin(
    transport_type: TransportType, events: EventEmitter[McpEvent] | None = None
) -> TransportPlugin:
    """Construct the built-in plugin for ``transport_type``."""
    match transport_type:
        case TransportType.SSE:
            return SSEPlugin(events)
        case TransportType.WEBSOCKET:
            return WebSocketPlugin(events)
        case TransportType.STREAMABLE_HTTP:
            return StreamableHttpPlugin(events)
    raise PluginNotFoundError(str(transport_type))


def _coerce_type(transport_type: TransportType | str) -> TransportType:
    try:
        return TransportType(transport_type)
    except ValueError:
        raise PluginNotFoundError(str(transport_type)) from None


class PluginRegistry:
    """Registered transport plugins and their initialization state.

    Attributes:
        events: Bus that registry events are emitted on; handed to every
            plugin at registration.
    """

    def __init__(self, events: EventEmitter[McpEvent] | None = None) -> None:
        self.events: EventEmitter[McpEvent] = events or EventEmitter()
        self._plugins: dict[TransportType, TransportPlugin] = {}
        self._initialized: set[TransportType] = set()
        self._initializing: dict[TransportType, asyncio.Future[None]] = {}

    def register(self, plugin: TransportPlugin) -> None:
        """Register ``plugin`` under its transport type, replacing any previous one."""
        transport_type = plugin.metadata.transport_type
        if transport_type in self._plugins:
            logger.warning(
                "Plugin for transport '%s' already registered, replacing", transport_type.value
            )
            self._initialized.discard(transport_type)

        plugin.bind_events(self.events)
        self._plugins[transport_type] = plugin
        logger.info(
            "Registered plugin: %s v%s (%s)",
            plugin.metadata.name,
            plugin.metadata.version,
            transport_type.value,
        )
        self.events.emit(REGISTRY_PLUGIN_REGISTERED, PluginRegistered(plugin=plugin))

    def unregister(self, transport_type: TransportType | str) -> bool:
        """Remove the plugin for ``transport_type``.

        Returns:
            False if no plugin was registered for it.
        """
        try:
            transport_type = TransportType(transport_type)
        except ValueError:
            return False
        if self._plugins.pop(transport_type, None) is None:
            return False

        self._initialized.discard(transport_type)
        logger.info("Unregistered plugin for transport: %s", transport_type.value)
        self.events.emit(REGISTRY_PLUGIN_UNREGISTERED, PluginUnregistered(type=transport_type))
        return True

    def get_plugin(self, transport_type: TransportType | str) -> TransportPlugin | None:
        try:
            return self._plugins.get(TransportType(transport_type))
        except ValueError:
            return None

    async def get_initialized_plugin(
        self,
        transport_type: TransportType | str,
        config: Mapping[str, Any] | None = None,
    ) -> TransportPlugin:
        """Return the plugin for ``transport_type``, initializing it on first use.

        Concurrent callers share one initialization. A failed initialization
        is not recorded, so the next call tries again.

        Args:
            transport_type: Transport to look up.
            config: Plugin config for the first initialization. Defaults to
                the plugin's own defaults. Ignored once initialized.

        Raises:
            PluginNotFoundError: If nothing is registered for the type.
        """
        transport_type = _coerce_type(transport_type)
        plugin = self._plugins.get(transport_type)
        if plugin is None:
            raise PluginNotFoundError(transport_type.value)

        if transport_type in self._initialized:
            return plugin

        pending = self._initializing.get(transport_type)
        if pending is None:
            pending = asyncio.ensure_future(self._initialize(transport_type, plugin, config))
            self._initializing[transport_type] = pending

            def _clear(done: asyncio.Future[None]) -> None:
                if self._initializing.get(transport_type) is done:
                    del self._initializing[transport_type]

            pending.add_done_callback(_clear)

        await asyncio.shield(pending)
        return plugin

    async def _initialize(
        self,
        transport_type: TransportType,
        plugin: TransportPlugin,
        config: Mapping[str, Any] | None,
    ) -> None:
        await plugin.initialize(config if config is not None else plugin.get_default_config())
        # Skip if the plugin was replaced or removed while initializing
        if self._plugins.get(transport_type) is plugin:
            self._initialized.add(transport_type)
        logger.info("Initialized plugin: %s", transport_type.value)

    def is_plugin_available(self, transport_type: TransportType | str) -> bool:
        return self.get_plugin(transport_type) is not None

    def is_plugin_initialized(self, transport_type: TransportType | str) -> bool:
        try:
            return TransportType(transport_type) in self._initialized
        except ValueError:
            return False

    def list_available(self) -> list[TransportType]:
        return list(self._plugins)

    def list_initialized(self) -> list[TransportType]:
        return [t for t in self._plugins if t in self._initialized]

    def get_plugin_info(self, transport_type: TransportType | str) -> dict[str, Any]:
        """Availability, initialization flag and metadata for one type."""
        plugin = self.get_plugin(transport_type)
        return {
            "available": plugin is not None,
            "initialized": self.is_plugin_initialized(transport_type),
            "metadata": plugin.metadata if plugin is not None else None,
        }

    def load_default_plugins(self) -> None:
        """Register the SSE, WebSocket and Streamable HTTP plugins.

        All three are built before any is registered; a failure registers none.

        Raises:
            PluginLoadError: If a plugin cannot be constructed.
        """
        logger.debug("Loading default plugins...")
        try:
            plugins = [create_plugin(t, self.events) for t in DEFAULT_PLUGIN_TYPES]
        except Exception as e:
            logger.error("Failed to load default plugins: %s", e)
            raise PluginLoadError(f"Failed to load default plugins: {e}") from e

        for plugin in plugins:
            self.register(plugin)

        logger.info("Loaded %d default plugins", len(self._plugins))
        self.events.emit(REGISTRY_PLUGINS_LOADED, PluginsLoaded(count=len(self._plugins)))

    def clear(self) -> None:
        """Drop every plugin and initialization flag."""
        self._plugins.clear()
        self._initialized.clear()
        logger.debug("Cleared all plugins")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_plugins": len(self._plugins),
            "initialized_plugins": len(self.list_initialized()),
            "available_types": self.list_available(),
            "initialized_types": self.list_initialized(),
        }
