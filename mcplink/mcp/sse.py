"""Server-Sent Events decoding.

Used by the SSE transport (long-lived GET stream) and by the Streamable
HTTP transport (POST responses with ``Content-Type: text/event-stream``).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched event.

    Attributes:
        event: Event type, "message" when the stream did not name one.
        data: Data lines joined with newlines.
        id: Last event id, if the server sent one.
    """

    event: str
    data: str
    id: str | None = None


class SSEDecoder:
    """Incremental line-oriented decoder.

    Feed text chunks with :meth:`feed`; complete events come back as they
    are terminated by a blank line. Comment lines (``:keep-alive``) are
    skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None

    def feed(self, chunk: str) -> list[SSEEvent]:
        self._buffer += chunk
        events: list[SSEEvent] = []

        # Process complete lines
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            event = self._process_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """Dispatch whatever is buffered when the stream ends without a blank line."""
        events: list[SSEEvent] = []
        if self._buffer:
            event = self._process_line(self._buffer.rstrip("\r"))
            self._buffer = ""
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _process_line(self, line: str) -> SSEEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        match name:
            case "event":
                self._event = value
            case "data":
                self._data.append(value)
            case "id":
                self._last_id = value
            case _:
                # "retry" and unknown fields carry nothing we act on
                pass
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = SSEEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return event


async def iter_sse_events(chunks: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Decode an async stream of text chunks into events."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
