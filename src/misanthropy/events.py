"""Typed events of the streaming Messages protocol.

:func:`decode_event` turns one raw frame (the JSON payload of one SSE
``data:`` line) into exactly one event.  Frames whose ``type`` is not
known decode to :class:`UnknownEvent` so that new protocol additions
do not break old clients.

Event sequence::

    message_start -> (content_block_start -> content_block_delta* ->
    content_block_stop)* -> message_delta -> message_stop

with ``ping`` interspersed for keepalive.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, StrictInt, ValidationError

from misanthropy.content import (
    ContentBlock,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)
from misanthropy.errors import DecodeError
from misanthropy.response import MessagesResponse
from misanthropy.usage import Usage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------

class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class InputJsonDelta(BaseModel):
    type: Literal["input_json_delta"] = "input_json_delta"
    partial_json: str


class ThinkingDelta(BaseModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    thinking: str


class SignatureDelta(BaseModel):
    type: Literal["signature_delta"] = "signature_delta"
    signature: str


Delta = Annotated[
    Union[TextDelta, InputJsonDelta, ThinkingDelta, SignatureDelta],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class MessageStartEvent(BaseModel):
    type: Literal["message_start"] = "message_start"
    message: MessagesResponse


class ContentBlockStartEvent(BaseModel):
    type: Literal["content_block_start"] = "content_block_start"
    index: StrictInt = Field(ge=0)
    content_block: ContentBlock


class ContentBlockDeltaEvent(BaseModel):
    type: Literal["content_block_delta"] = "content_block_delta"
    index: StrictInt = Field(ge=0)
    delta: Delta


class ContentBlockStopEvent(BaseModel):
    type: Literal["content_block_stop"] = "content_block_stop"
    index: StrictInt = Field(ge=0)


class MessageDeltaBody(BaseModel):
    """Only fields present in the frame are applied."""

    stop_reason: str | None = None
    stop_sequence: str | None = None


class MessageDeltaEvent(BaseModel):
    type: Literal["message_delta"] = "message_delta"
    delta: MessageDeltaBody = Field(default_factory=MessageDeltaBody)
    usage: Usage | None = None


class MessageStopEvent(BaseModel):
    type: Literal["message_stop"] = "message_stop"


class PingEvent(BaseModel):
    type: Literal["ping"] = "ping"


class ErrorDetail(BaseModel):
    type: str
    message: str = ""


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: ErrorDetail


class UnknownEvent(BaseModel):
    """A frame of a kind this client does not know; ignored when applied."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)


StreamEvent = Union[
    MessageStartEvent,
    ContentBlockStartEvent,
    ContentBlockDeltaEvent,
    ContentBlockStopEvent,
    MessageDeltaEvent,
    MessageStopEvent,
    PingEvent,
    ErrorEvent,
    UnknownEvent,
]

_EVENT_TYPES: dict[str, type[BaseModel]] = {
    "message_start": MessageStartEvent,
    "content_block_start": ContentBlockStartEvent,
    "content_block_delta": ContentBlockDeltaEvent,
    "content_block_stop": ContentBlockStopEvent,
    "message_delta": MessageDeltaEvent,
    "message_stop": MessageStopEvent,
    "ping": PingEvent,
    "error": ErrorEvent,
}


def decode_event(frame: dict | str | bytes) -> StreamEvent:
    """Decode one raw frame into a typed event.

    Args:
        frame: A parsed JSON object, or the JSON text of one.

    Raises:
        DecodeError: If the frame is not JSON, not an object, has no
            string ``type``, or is a known kind with missing or
            wrong-typed fields.
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Frame is not valid JSON: {e}") from e
    if not isinstance(frame, dict):
        raise DecodeError(
            f"Frame must be a JSON object, got {type(frame).__name__}"
        )
    kind = frame.get("type")
    if not isinstance(kind, str):
        raise DecodeError("Frame has no string 'type' field")

    event_cls = _EVENT_TYPES.get(kind)
    if event_cls is None:
        logger.debug(f"Unknown frame kind {kind!r}, passing through")
        return UnknownEvent(type=kind, data=frame)
    try:
        return event_cls.model_validate(frame)
    except ValidationError as e:
        raise DecodeError(f"Malformed {kind} frame: {e}") from e


def encode_event(event: StreamEvent) -> dict:
    """Inverse of :func:`decode_event` for a single event."""
    if isinstance(event, UnknownEvent):
        return dict(event.data)
    return event.model_dump(mode="json", exclude_none=True)


def _chunks(value: str, size: int | None) -> list[str]:
    if not value:
        return []
    if not size:
        return [value]
    return [value[i:i + size] for i in range(0, len(value), size)]


def _block_events(
    index: int, block, chunk_size: int | None,
) -> list[StreamEvent]:
    if isinstance(block, TextBlock):
        seed = block.model_copy(update={"text": ""})
        deltas = [TextDelta(text=c) for c in _chunks(block.text, chunk_size)]
    elif isinstance(block, ThinkingBlock):
        seed = block.model_copy(update={"thinking": "", "signature": ""})
        deltas = [
            ThinkingDelta(thinking=c)
            for c in _chunks(block.thinking, chunk_size)
        ]
        if block.signature:
            deltas.append(SignatureDelta(signature=block.signature))
    elif isinstance(block, ToolUseBlock):
        seed = block.model_copy(update={"input": {}})
        raw = json.dumps(block.input) if block.input else ""
        deltas = [
            InputJsonDelta(partial_json=c) for c in _chunks(raw, chunk_size)
        ]
    else:
        # redacted thinking, images and tool results arrive whole
        seed = block.model_copy(deep=True)
        deltas = []

    return [
        ContentBlockStartEvent(index=index, content_block=seed),
        *(ContentBlockDeltaEvent(index=index, delta=d) for d in deltas),
        ContentBlockStopEvent(index=index),
    ]


def response_events(
    response: MessagesResponse, chunk_size: int | None = None,
) -> list[StreamEvent]:
    """Expand a finished response into the event sequence that streams it.

    Reassembling the returned events reproduces *response*.  Text,
    thinking and tool input are split into fragments of at most
    *chunk_size* characters (one fragment when ``None``).
    """
    skeleton = response.model_copy(update={
        "content": [],
        "stop_reason": None,
        "stop_sequence": None,
        "usage": Usage(
            input_tokens=response.usage.input_tokens,
            cache_creation_input_tokens=(
                response.usage.cache_creation_input_tokens
            ),
            cache_read_input_tokens=response.usage.cache_read_input_tokens,
        ),
    })
    events: list[StreamEvent] = [MessageStartEvent(message=skeleton)]
    for index, block in enumerate(response.content):
        events.extend(_block_events(index, block, chunk_size))
    events.append(MessageDeltaEvent(
        delta=MessageDeltaBody(
            stop_reason=response.stop_reason,
            stop_sequence=response.stop_sequence,
        ),
        usage=Usage(**response.usage.model_dump()),
    ))
    events.append(MessageStopEvent())
    return events
