"""Server-Sent Events framing for the streaming protocol.

:class:`SSEDecoder` turns SSE lines into raw frame payloads (the JSON
text of each event's ``data:``); :func:`sse_generator` does the reverse
for typed events.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable, Iterator

from misanthropy.events import StreamEvent, encode_event


class SSEDecoder:
    """Incremental SSE parser.

    Feed it one line at a time (without the trailing newline).  A blank
    line ends an event; :meth:`feed_line` then returns the event's data,
    with multiple ``data:`` lines joined by newlines.  Comment lines and
    fields other than ``data`` are ignored; the ``event:`` name is
    redundant with the payload's ``type``.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed_line(self, line: str) -> str | None:
        line = line.rstrip("\r")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        return None

    def flush(self) -> str | None:
        """Return any pending event data (e.g. at end of stream)."""
        if not self._data:
            return None
        data = "\n".join(self._data)
        self._data = []
        return data


def iter_frames(lines: Iterable[str]) -> Iterator[str]:
    """Yield the data payload of each SSE event in *lines*."""
    decoder = SSEDecoder()
    for line in lines:
        data = decoder.feed_line(line)
        if data is not None:
            yield data
    data = decoder.flush()
    if data is not None:
        yield data


async def aiter_frames(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Async counterpart of :func:`iter_frames`."""
    decoder = SSEDecoder()
    async for line in lines:
        data = decoder.feed_line(line)
        if data is not None:
            yield data
    data = decoder.flush()
    if data is not None:
        yield data


def format_sse(event: StreamEvent) -> str:
    frame = encode_event(event)
    return f"event: {frame['type']}\ndata: {json.dumps(frame)}\n\n"


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        yield format_sse(event)
