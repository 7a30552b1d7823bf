"""URI parsing and transport detection for MCP server endpoints."""

from urllib.parse import SplitResult, urlsplit

from mcplink.core.errors import InvalidUriError
from mcplink.core.types import TransportType

WEBSOCKET_SCHEMES: frozenset[str] = frozenset({"ws", "wss"})
HTTP_SCHEMES: frozenset[str] = frozenset({"http", "https"})


def parse_uri(uri: str) -> SplitResult:
    """Split a URI and require a scheme and a host.

    Raises:
        InvalidUriError: If the string is not an absolute URI with a host.
    """
    if not isinstance(uri, str) or not uri.strip():
        raise InvalidUriError(str(uri), "empty URI")
    try:
        parts = urlsplit(uri.strip())
        # Accessing .port validates it (raises ValueError when out of range)
        parts.port
    except ValueError as e:
        raise InvalidUriError(uri, str(e)) from e

    if not parts.scheme:
        raise InvalidUriError(uri, "missing scheme")
    if not parts.hostname:
        raise InvalidUriError(uri, "missing host")
    return parts


def has_scheme(uri: str, schemes: frozenset[str]) -> bool:
    """True if ``uri`` parses and its scheme is one of ``schemes``. Never raises."""
    try:
        return parse_uri(uri).scheme.lower() in schemes
    except InvalidUriError:
        return False


def detect_transport_type(uri: str) -> TransportType:
    """Guess the transport from a URI scheme.

    ``ws``/``wss`` map to WebSocket; everything else, including strings that
    do not parse, maps to SSE. Streamable HTTP is never guessed and has to be
    requested explicitly.
    """
    if has_scheme(uri, WEBSOCKET_SCHEMES):
        return TransportType.WEBSOCKET
    return TransportType.SSE
