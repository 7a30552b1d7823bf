"""MCP protocol types.

Defines the data structures specific to MCP (Model Context Protocol),
which builds on JSON-RPC 2.0 with additional semantics for tools,
resources, and prompts. Each type parses the server's camelCase form with
``from_dict`` and renders it back with ``to_dict``.

MCP Spec: https://modelcontextprotocol.io/specification/2025-11-25
"""

from dataclasses import dataclass, field
from typing import Any

# MCP protocol version we support
PROTOCOL_VERSION = "2025-11-25"

# Maximum size for MCP tool output to prevent memory exhaustion from misbehaving servers
MAX_MCP_OUTPUT_SIZE: int = 10 * 1024 * 1024  # 10 MB


@dataclass
class MCPTool:
    """Tool definition from an MCP server.

    Attributes:
        name: Unique identifier for the tool.
        description: Human-readable description of what the tool does.
        input_schema: JSON Schema describing the tool's parameters.
        title: Human-readable title for display (optional).
        output_schema: JSON Schema for structured output (optional).
        annotations: Server-specific metadata (optional).
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    title: str | None = None
    output_schema: dict[str, Any] | None = None
    annotations: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPTool":
        """Create from MCP server response."""
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {},
            title=data.get("title"),
            output_schema=data.get("outputSchema"),
            annotations=data.get("annotations"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire form (camelCase); optional fields only when set."""
        result: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.title is not None:
            result["title"] = self.title
        if self.output_schema is not None:
            result["outputSchema"] = self.output_schema
        if self.annotations is not None:
            result["annotations"] = self.annotations
        return result


@dataclass
class MCPToolResult:
    """Result from an MCP tool invocation.

    MCP returns results as a list of content items (text, images, etc).

    Attributes:
        content: List of content items from the tool (text, images, resources).
        is_error: Whether the result represents an error.
        structured_content: Structured output (optional).
    """

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    structured_content: dict[str, Any] | None = None

    def to_text(self) -> str:
        """Join all text-type content items with newlines.

        Truncates if total size exceeds MAX_MCP_OUTPUT_SIZE.
        """
        texts = []
        total_size = 0

        for item in self.content:
            if item.get("type") == "text":
                text = item.get("text", "")
                total_size += len(text)
                if total_size > MAX_MCP_OUTPUT_SIZE:
                    texts.append(
                        f"\n... [truncated, exceeded {MAX_MCP_OUTPUT_SIZE // 1024 // 1024}MB limit]"
                    )
                    break
                texts.append(text)

        return "\n".join(texts)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPToolResult":
        """Create from MCP server response."""
        return cls(
            content=data.get("content") or [],
            is_error=bool(data.get("isError", False)),
            structured_content=data.get("structuredContent"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.structured_content is not None:
            result["structuredContent"] = self.structured_content
        return result


@dataclass
class MCPServerInfo:
    """Server information from MCP initialization.

    Attributes:
        name: Server name.
        version: Server version.
        protocol_version: Protocol version the server agreed to.
        capabilities: Server capabilities (tools, resources, prompts, etc).
    """

    name: str
    version: str
    protocol_version: str | None = None
    capabilities: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPServerInfo":
        """Create from initialize response."""
        server_info = data.get("serverInfo") or {}
        return cls(
            name=server_info.get("name", "unknown"),
            version=server_info.get("version", "unknown"),
            protocol_version=data.get("protocolVersion"),
            capabilities=data.get("capabilities") or {},
        )

    def supports(self, capability: str) -> bool:
        """True if the server advertised ``capability`` ("tools", "resources", "prompts")."""
        return capability in self.capabilities


@dataclass
class MCPClientInfo:
    """Client information sent during initialization."""

    name: str = "mcplink"
    version: str = "0.1.0"

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for MCP protocol."""
        return {"name": self.name, "version": self.version}


@dataclass
class MCPResource:
    """Resource definition from an MCP server.

    Resources are URI-addressable content that servers make available
    to clients, such as files, database records, or API responses.

    Attributes:
        uri: Unique identifier for the resource.
        name: Human-readable name.
        description: Optional description of what the resource contains.
        mime_type: MIME type of the resource content.
    """

    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPResource":
        """Create from MCP server response."""
        return cls(
            uri=data["uri"],
            name=data.get("name", data["uri"]),
            description=data.get("description"),
            mime_type=data.get("mimeType"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        return result


@dataclass
class MCPPromptArgument:
    """Argument definition for an MCP prompt."""

    name: str
    description: str | None = None
    required: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPPromptArgument":
        """Create from MCP server response."""
        return cls(
            name=data["name"],
            description=data.get("description"),
            required=bool(data.get("required", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "required": self.required}
        if self.description is not None:
            result["description"] = self.description
        return result


@dataclass
class MCPPrompt:
    """Prompt definition from an MCP server.

    Attributes:
        name: Unique identifier for the prompt.
        description: Optional description of what the prompt does.
        arguments: List of argument definitions.
    """

    name: str
    description: str | None = None
    arguments: list[MCPPromptArgument] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPPrompt":
        """Create from MCP server response."""
        args_data = data.get("arguments") or []
        return cls(
            name=data["name"],
            description=data.get("description"),
            arguments=[MCPPromptArgument.from_dict(a) for a in args_data],
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            result["description"] = self.description
        if self.arguments:
            result["arguments"] = [a.to_dict() for a in self.arguments]
        return result
