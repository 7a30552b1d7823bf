"""Core types for mcplink.

This module defines the data structures shared across the client: transport
types, connection requests, primitives, and the normalized tool shape handed
to consumers. Dataclasses are frozen where the value is immutable once built.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

PrimitiveType = Literal["tool", "resource", "prompt"]


class TransportType(str, Enum):
    """Wire transport used to reach an MCP server."""

    SSE = "sse"
    WEBSOCKET = "websocket"
    STREAMABLE_HTTP = "streamable-http"


@dataclass(frozen=True)
class ConnectionRequest:
    """A request to connect to an MCP server.

    Attributes:
        uri: Server URI (ws://, wss://, http://, https://).
        type: Transport to use.
        config: Transport-specific overrides merged over the client config.
    """

    uri: str
    type: TransportType
    config: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class Primitive:
    """One capability exposed by a server.

    Attributes:
        type: "tool", "resource" or "prompt".
        value: Protocol fields in wire form (name, description,
            inputSchema / uri / arguments).
    """

    type: PrimitiveType
    value: dict[str, Any]

    @property
    def name(self) -> str:
        return str(self.value.get("name", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "value": self.value}


def compact_json(value: Any) -> str:
    """Serialize without whitespace, matching what browsers' JSON.stringify produce."""
    return json.dumps(value, separators=(",", ":"))


@dataclass
class NormalizedTool:
    """Tool description in the shape consumers render.

    Attributes:
        name: Tool name.
        description: Description, empty string when the server gave none.
        input_schema: JSON Schema of the arguments.
        schema: ``input_schema`` serialized as compact JSON.
        uri: Optional URI carried by some servers.
        arguments: Optional argument list carried by some servers.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    schema: str = "{}"
    uri: str | None = None
    arguments: list[Any] | None = None

    @classmethod
    def from_value(cls, value: Mapping[str, Any]) -> NormalizedTool:
        """Build from a tool primitive value.

        Accepts either ``inputSchema`` (wire form) or ``input_schema``.
        """
        raw_schema = value.get("inputSchema") or value.get("input_schema")
        return cls(
            name=value.get("name") or "",
            description=value.get("description") or "",
            input_schema=raw_schema or {},
            schema=compact_json(raw_schema) if raw_schema else "{}",
            uri=value.get("uri") or None,
            arguments=value.get("arguments") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Legacy dict form; ``uri`` and ``arguments`` only when present."""
        result: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "schema": self.schema,
        }
        if self.uri:
            result["uri"] = self.uri
        if self.arguments:
            result["arguments"] = self.arguments
        return result


@dataclass
class PrimitivesResponse:
    """Primitives grouped by type.

    Attributes:
        tools: Normalized tools.
        resources: Resource values in wire form.
        prompts: Prompt values in wire form.
        timestamp: Unix time the listing completed.
    """

    tools: list[NormalizedTool] = field(default_factory=list)
    resources: list[dict[str, Any]] = field(default_factory=list)
    prompts: list[dict[str, Any]] = field(default_factory=list)
    timestamp: float = 0.0

    def to_primitives(self) -> list[dict[str, Any]]:
        """Flatten back into the legacy ``[{"type", "value"}]`` list."""
        flat: list[dict[str, Any]] = []
        flat.extend({"type": "tool", "value": t.to_dict()} for t in self.tools)
        flat.extend({"type": "resource", "value": r} for r in self.resources)
        flat.extend({"type": "prompt", "value": p} for p in self.prompts)
        return flat
