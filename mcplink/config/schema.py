"""Pydantic models for mcplink configuration validation.

Keys may be written in camelCase (``connectionTimeout``) or snake_case
(``connection_timeout``). Durations are milliseconds.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mcplink.core.types import TransportType

LogLevel = Literal["debug", "info", "warn", "error"]


class _PluginConfigBase(BaseModel):
    """Common plugin options. Unknown keys are kept for forward compatibility."""

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    keep_alive: bool = True
    """Keep the underlying HTTP connection alive between requests."""

    connection_timeout: int = Field(default=5000, gt=0)
    """Milliseconds to wait for the transport to open."""

    read_timeout: int = Field(default=30000, gt=0)
    """Milliseconds to wait for a response body."""

    headers: dict[str, str] = {}
    """Extra headers sent with every request."""

    def to_dict(self) -> dict[str, Any]:
        """camelCase dict, including unknown keys."""
        return self.model_dump(by_alias=True)


class SSEPluginConfig(_PluginConfigBase):
    """Options for the SSE transport.

    Example in config.json:
        "plugins": {
            "sse": {"connectionTimeout": 10000, "headers": {"Authorization": "Bearer x"}}
        }
    """


class StreamableHttpPluginConfig(_PluginConfigBase):
    """Options for the Streamable HTTP transport."""

    fallback_to_sse: bool = Field(default=False, alias="fallbackToSSE")
    """Retry over SSE when a Streamable HTTP connect fails."""

    max_retries: int = Field(default=2, ge=0, le=10)
    """Retry attempts for transient HTTP failures (429/5xx, network errors)."""


class WebSocketPluginConfig(BaseModel):
    """Options for the WebSocket transport.

    ``ping_interval``, ``pong_timeout`` and ``max_reconnect_attempts`` are
    accepted but not acted on; liveness is left to the protocol layer and
    there is no automatic reconnection.
    """

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    protocols: list[str] = ["mcp-v1"]
    """WebSocket subprotocols offered during the handshake."""

    ping_interval: int = Field(default=30000, ge=0)
    pong_timeout: int = Field(default=5000, ge=0)
    max_reconnect_attempts: int = Field(default=3, ge=0)

    binary_type: Literal["arraybuffer", "blob"] = "arraybuffer"
    """How binary frames are surfaced. Both are decoded as UTF-8 JSON."""

    connect_timeout: int = Field(default=10000, gt=0)
    """Milliseconds before an opening handshake is abandoned."""

    @field_validator("protocols")
    @classmethod
    def validate_protocols(cls, v: list[str]) -> list[str]:
        """Subprotocol tokens may not be blank."""
        if any(not p.strip() for p in v):
            raise ValueError("WebSocket subprotocols must be non-empty strings")
        return v

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PluginsConfig(BaseModel):
    """Per-transport plugin configuration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    sse: SSEPluginConfig = SSEPluginConfig()
    websocket: WebSocketPluginConfig = WebSocketPluginConfig()
    streamable_http: StreamableHttpPluginConfig = Field(
        default=StreamableHttpPluginConfig(), alias="streamable-http"
    )

    def for_type(self, transport_type: TransportType) -> dict[str, Any]:
        """Config dict for one transport, in camelCase."""
        match transport_type:
            case TransportType.SSE:
                return self.sse.to_dict()
            case TransportType.WEBSOCKET:
                return self.websocket.to_dict()
            case TransportType.STREAMABLE_HTTP:
                return self.streamable_http.to_dict()


class GlobalConfig(BaseModel):
    """Client-wide settings.

    ``max_retries`` and ``reconnect_delay`` are accepted and validated but
    not acted on; a lost connection is reported, never re-established
    automatically.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    timeout: int = Field(default=30000, gt=0)
    """Milliseconds allowed for the protocol handshake."""

    max_retries: int = Field(default=3, ge=0, le=10)

    health_check_interval: int = Field(default=60000, ge=0)
    """Milliseconds between background health checks. 0 disables them."""

    reconnect_delay: int = Field(default=2000, ge=0)

    log_level: LogLevel = "info"
    """Level applied to the ``mcplink`` logger."""

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.lower()
            if v == "warning":
                return "warn"
        return v


class ClientConfig(BaseModel):
    """Root configuration model.

    Example config.json:
        {
            "defaultTransport": "websocket",
            "defaultUri": "ws://localhost:3006/message",
            "plugins": {"websocket": {"protocols": ["mcp-v1"]}},
            "global": {"timeout": 15000, "logLevel": "debug"}
        }
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    default_transport: TransportType = TransportType.SSE
    """Transport used when a caller does not pick one."""

    default_uri: str = "http://localhost:3006/sse"
    """Server URI used when a caller does not give one."""

    plugins: PluginsConfig = PluginsConfig()

    global_: GlobalConfig = Field(default=GlobalConfig(), alias="global")

    def to_dict(self) -> dict[str, Any]:
        """camelCase dict suitable for :meth:`model_validate`."""
        return self.model_dump(by_alias=True, mode="json")
