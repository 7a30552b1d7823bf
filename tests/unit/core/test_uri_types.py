"""Tests for URI helpers, transport detection and primitive types."""

import pytest

from mcplink.core.errors import InvalidUriError
from mcplink.core.types import (
    ConnectionRequest,
    NormalizedTool,
    Primitive,
    PrimitivesResponse,
    TransportType,
    compact_json,
)
from mcplink.core.uri import HTTP_SCHEMES, detect_transport_type, has_scheme, parse_uri
from mcplink.core.utils import deep_merge


class TestDetectTransportType:
    """Tests for detect_transport_type()."""

    @pytest.mark.parametrize(
        "uri",
        ["ws://localhost:3006/message", "wss://example.com/mcp", "WS://LOCALHOST/x"],
    )
    def test_websocket_schemes(self, uri: str) -> None:
        assert detect_transport_type(uri) == TransportType.WEBSOCKET

    @pytest.mark.parametrize(
        "uri",
        ["http://localhost:3006/sse", "https://example.com/sse", "not a uri", ""],
    )
    def test_everything_else_is_sse(self, uri: str) -> None:
        """Non-WebSocket and unparseable URIs fall back to SSE without raising."""
        assert detect_transport_type(uri) == TransportType.SSE

    def test_streamable_http_never_guessed(self) -> None:
        assert detect_transport_type("http://localhost:3006") == TransportType.SSE


class TestParseUri:
    """Tests for parse_uri() and has_scheme()."""

    def test_valid_uri(self) -> None:
        parts = parse_uri("http://localhost:3006/sse")
        assert parts.scheme == "http"
        assert parts.hostname == "localhost"
        assert parts.port == 3006

    @pytest.mark.parametrize(
        "uri,reason",
        [
            ("", "empty URI"),
            ("   ", "empty URI"),
            ("localhost:3006", "missing host"),
            ("/just/a/path", "missing scheme"),
        ],
    )
    def test_invalid_uri(self, uri: str, reason: str) -> None:
        with pytest.raises(InvalidUriError) as exc_info:
            parse_uri(uri)
        assert reason in str(exc_info.value)

    def test_out_of_range_port(self) -> None:
        with pytest.raises(InvalidUriError):
            parse_uri("http://localhost:99999/sse")

    def test_has_scheme_never_raises(self) -> None:
        assert has_scheme("https://example.com", HTTP_SCHEMES) is True
        assert has_scheme("ws://example.com", HTTP_SCHEMES) is False
        assert has_scheme("::::", HTTP_SCHEMES) is False


class TestNormalizedTool:
    """Tests for NormalizedTool.from_value() and to_dict()."""

    def test_schema_is_compact_json(self) -> None:
        tool = NormalizedTool.from_value({"name": "t", "inputSchema": {"a": 1}})
        assert tool.schema == '{"a":1}'
        assert tool.input_schema == {"a": 1}

    def test_missing_schema_and_description(self) -> None:
        tool = NormalizedTool.from_value({"name": "bare"})
        assert tool.description == ""
        assert tool.input_schema == {}
        assert tool.schema == "{}"

    def test_nameless_tool_gets_empty_name(self) -> None:
        tool = NormalizedTool.from_value(
            {"description": "no name", "inputSchema": {"type": "object"}}
        )
        assert tool.name == ""
        assert tool.to_dict()["description"] == "no name"

    def test_snake_case_schema_accepted(self) -> None:
        tool = NormalizedTool.from_value({"name": "t", "input_schema": {"type": "object"}})
        assert tool.schema == '{"type":"object"}'

    def test_optional_fields_only_when_present(self) -> None:
        plain = NormalizedTool.from_value({"name": "t"}).to_dict()
        assert set(plain) == {"name", "description", "input_schema", "schema"}

        rich = NormalizedTool.from_value(
            {"name": "t", "uri": "file:///x", "arguments": [{"name": "a"}]}
        ).to_dict()
        assert rich["uri"] == "file:///x"
        assert rich["arguments"] == [{"name": "a"}]

    def test_compact_json_has_no_whitespace(self) -> None:
        assert compact_json({"a": [1, 2], "b": {"c": None}}) == '{"a":[1,2],"b":{"c":null}}'


class TestPrimitivesResponse:
    """Tests for the flat legacy shape."""

    def test_to_primitives_orders_tools_resources_prompts(self) -> None:
        response = PrimitivesResponse(
            tools=[NormalizedTool.from_value({"name": "echo"})],
            resources=[{"uri": "file:///a", "name": "a"}],
            prompts=[{"name": "greet"}],
        )

        flat = response.to_primitives()

        assert [p["type"] for p in flat] == ["tool", "resource", "prompt"]
        assert flat[0]["value"]["schema"] == "{}"
        assert flat[1]["value"] == {"uri": "file:///a", "name": "a"}

    def test_primitive_name_and_dict(self) -> None:
        primitive = Primitive(type="tool", value={"name": "echo"})
        assert primitive.name == "echo"
        assert primitive.to_dict() == {"type": "tool", "value": {"name": "echo"}}

    def test_connection_request_is_frozen(self) -> None:
        request = ConnectionRequest(uri="ws://x", type=TransportType.WEBSOCKET)
        with pytest.raises(AttributeError):
            request.uri = "ws://y"  # type: ignore[misc]


class TestDeepMerge:
    """Tests for deep_merge()."""

    def test_nested_dicts_merge_and_lists_replace(self) -> None:
        base = {"headers": {"a": "1", "b": "2"}, "protocols": ["mcp-v1"], "x": 1}
        override = {"headers": {"b": "3"}, "protocols": ["custom"]}

        merged = deep_merge(base, override)

        assert merged == {"headers": {"a": "1", "b": "3"}, "protocols": ["custom"], "x": 1}
        assert base["headers"] == {"a": "1", "b": "2"}
