"""Folding responses back into a request's conversation history.

Both entry points append the response as an assistant turn and return
the caller's running usage total with the response's usage added.
Merging never reorders or deduplicates existing history; the order of
merge calls is the order of the conversation.
"""

import logging
import weakref
from dataclasses import dataclass

from misanthropy.content import Message
from misanthropy.request import MessagesRequest
from misanthropy.response import MessagesResponse
from misanthropy.streaming import StreamingResponse
from misanthropy.usage import COUNTERS, Usage, merge, zero

logger = logging.getLogger(__name__)


@dataclass
class _MergeRecord:
    """A streamed turn appended to a request by merge_streamed_response."""

    request: weakref.ref
    message: Message
    absorbed: Usage


# Held weakly on both sides: neither a stream nor a request is kept alive
# by having been merged.
_records: weakref.WeakKeyDictionary[StreamingResponse, list[_MergeRecord]] = (
    weakref.WeakKeyDictionary()
)


def merge_response(
    request: MessagesRequest,
    response: MessagesResponse,
    total: Usage | None = None,
) -> Usage:
    """Append a complete response to *request* as an assistant turn.

    Args:
        request: Request whose history grows by one message.
        response: The response to append.
        total: Running usage the caller tracks, if any.

    Returns:
        *total* (or zero) plus the response's usage.
    """
    request.add_message(response.to_message())
    return merge(total or zero(), response.usage)


def merge_streamed_response(
    request: MessagesRequest,
    streaming: StreamingResponse,
    total: Usage | None = None,
) -> Usage:
    """Append whatever *streaming* has assembled so far to *request*.

    The stream may still be in progress, or may have been cancelled or
    errored; its partial content is kept as context.  Merging the same
    stream into the same request again does not append a second turn:
    the turn appended earlier is refreshed with the current content,
    and only usage reported since the previous merge is added.

    Returns:
        *total* (or zero) plus the stream's usage not yet absorbed.
    """
    snapshot = streaming.snapshot()
    records = _records.setdefault(streaming, [])
    records[:] = [r for r in records if r.request() is not None]
    for record in records:
        if record.request() is not request:
            continue
        if not any(m is record.message for m in request.messages):
            continue
        record.message.content = snapshot.content
        growth = _growth(snapshot.usage, record.absorbed)
        record.absorbed = snapshot.usage
        logger.debug("Refreshed previously merged streamed turn")
        return merge(total or zero(), growth)

    message = Message(role=snapshot.role, content=snapshot.content)
    request.add_message(message)
    records.append(_MergeRecord(
        request=weakref.ref(request),
        message=message,
        absorbed=snapshot.usage,
    ))
    return merge(total or zero(), snapshot.usage)


def _growth(current: Usage, absorbed: Usage) -> Usage:
    return Usage(**{
        name: max(0, getattr(current, name) - getattr(absorbed, name))
        for name in COUNTERS
    })
