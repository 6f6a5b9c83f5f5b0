"""Reassembly of a streamed response.

A :class:`StreamingResponse` consumes stream events one at a time and
builds up the response they describe.  Content blocks in progress live
in an arena of slots addressed by their content-block index; a block
leaves its slot and joins the finished content when its
``content_block_stop`` arrives.

Any ordering violation puts the stream in the ``ERRORED`` state and is
raised.  Whatever was assembled before the error stays readable through
:meth:`StreamingResponse.snapshot`.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from misanthropy.content import (
    Role,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)
from misanthropy.errors import (
    MisanthropyError,
    ProtocolViolation,
    ToolInputParseError,
    upstream_error,
)
from misanthropy.events import (
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    ErrorEvent,
    InputJsonDelta,
    MessageDeltaEvent,
    MessageStartEvent,
    MessageStopEvent,
    PingEvent,
    SignatureDelta,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    UnknownEvent,
    decode_event,
)
from misanthropy.response import MessagesResponse
from misanthropy.usage import Usage, replace_cumulative, zero

logger = logging.getLogger(__name__)


class StreamState(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class _Slot:
    """An open content block and its raw tool-input buffer."""

    block: object
    json_buffer: str = ""

    def materialize(self):
        """Copy of the block as it stands, or ``None`` if not presentable."""
        block = self.block.model_copy(deep=True)
        if isinstance(block, ToolUseBlock) and self.json_buffer.strip():
            try:
                parsed = json.loads(self.json_buffer)
            except json.JSONDecodeError:
                return None
            if not isinstance(parsed, dict):
                return None
            block.input = parsed
        return block


class StreamingResponse:
    """The response being assembled from one event stream.

    Feed it events in order with :meth:`apply` (typed events) or
    :meth:`feed` (raw frames).  Read it at any point with
    :meth:`snapshot`; :meth:`response` returns the final value once
    ``message_stop`` has been applied.

    Example::

        stream = StreamingResponse()
        for frame in frames:
            stream.feed(frame)
        print(stream.response().format_content())
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = StreamState.NOT_STARTED
        self._error: MisanthropyError | None = None
        self._id = ""
        self._model = ""
        self._role = Role.ASSISTANT
        self._content: list = []
        self._slots: list[_Slot | None] = []
        self._usage = zero()
        self._stop_reason: str | None = None
        self._stop_sequence: str | None = None
        self._handlers = {
            MessageStartEvent: self._on_message_start,
            ContentBlockStartEvent: self._on_block_start,
            ContentBlockDeltaEvent: self._on_block_delta,
            ContentBlockStopEvent: self._on_block_stop,
            MessageDeltaEvent: self._on_message_delta,
            MessageStopEvent: self._on_message_stop,
            ErrorEvent: self._on_error,
        }

    @classmethod
    def from_events(cls, events: Iterable[StreamEvent]) -> StreamingResponse:
        """Apply every event in *events* to a fresh stream."""
        stream = cls()
        for event in events:
            stream.apply(event)
        return stream

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def error(self) -> MisanthropyError | None:
        """The error that terminated the stream, if any."""
        return self._error

    @property
    def is_complete(self) -> bool:
        return self._state == StreamState.COMPLETED

    @property
    def usage(self) -> Usage:
        with self._lock:
            return self._usage.model_copy()

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    @property
    def stop_sequence(self) -> str | None:
        return self._stop_sequence

    @property
    def open_indices(self) -> list[int]:
        with self._lock:
            return [i for i, s in enumerate(self._slots) if s is not None]

    def snapshot(self) -> MessagesResponse:
        """A consistent copy of everything assembled so far.

        Open text and thinking blocks appear with their partial text.
        An open tool-use block appears only once its input buffer
        parses as a JSON object.
        """
        with self._lock:
            return self._build(include_open=True)

    def response(self) -> MessagesResponse:
        """The finished response.

        Raises:
            ProtocolViolation: If ``message_stop`` has not been applied.
        """
        with self._lock:
            if self._state != StreamState.COMPLETED:
                raise ProtocolViolation(
                    f"Response requested while stream is {self._state.value}"
                )
            return self._build(include_open=False)

    def _build(self, include_open: bool) -> MessagesResponse:
        content = [b.model_copy(deep=True) for b in self._content]
        if include_open:
            for slot in self._slots:
                if slot is None:
                    continue
                block = slot.materialize()
                if block is not None:
                    content.append(block)
        return MessagesResponse(
            id=self._id,
            model=self._model,
            role=self._role,
            content=content,
            stop_reason=self._stop_reason,
            stop_sequence=self._stop_sequence,
            usage=self._usage.model_copy(),
        )

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def feed(self, frame: dict | str | bytes) -> StreamEvent:
        """Decode a raw frame, apply it, and return the decoded event."""
        try:
            event = decode_event(frame)
        except MisanthropyError as e:
            self.abort(e)
            raise
        self.apply(event)
        return event

    def apply(self, event: StreamEvent) -> None:
        """Apply one event.

        Raises:
            ProtocolViolation: The event is not valid in the current state.
            ToolInputParseError: A finished tool-use block's input is not
                a JSON object.
            UpstreamError: The event is an API ``error`` event.
        """
        if isinstance(event, (PingEvent, UnknownEvent)):
            return
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unhandled stream event: {type(event).__name__}")

        with self._lock:
            try:
                if self._state in (StreamState.COMPLETED, StreamState.ERRORED):
                    raise ProtocolViolation(
                        f"{event.type} received after stream "
                        f"{self._state.value}"
                    )
                if (
                    self._state == StreamState.NOT_STARTED
                    and not isinstance(event, MessageStartEvent)
                ):
                    raise ProtocolViolation(
                        f"{event.type} received before message_start"
                    )
                handler(event)
            except MisanthropyError as e:
                self._set_error(e)
                raise

    def abort(self, error: MisanthropyError) -> None:
        """Terminate the stream with an error raised outside :meth:`apply`.

        Used for decode and transport failures.  The partial response
        stays readable.
        """
        with self._lock:
            self._set_error(error)

    def _set_error(self, error: MisanthropyError) -> None:
        if self._error is None:
            self._error = error
        if self._state != StreamState.ERRORED:
            logger.warning(f"Stream errored: {error}")
        self._state = StreamState.ERRORED

    def _open_slot(self, index: int, event_type: str) -> _Slot:
        if index >= len(self._slots):
            raise ProtocolViolation(
                f"{event_type} for content block {index}, which was "
                f"never started"
            )
        slot = self._slots[index]
        if slot is None:
            raise ProtocolViolation(
                f"{event_type} for content block {index}, which is "
                f"already stopped"
            )
        return slot

    def _on_message_start(self, event: MessageStartEvent) -> None:
        if self._state != StreamState.NOT_STARTED:
            raise ProtocolViolation("message_start received twice")
        message = event.message
        if message.content:
            raise ProtocolViolation(
                "message_start must carry empty content, got "
                f"{len(message.content)} blocks"
            )
        self._id = message.id
        self._model = message.model
        self._role = message.role
        self._stop_reason = message.stop_reason
        self._stop_sequence = message.stop_sequence
        self._usage = message.usage.model_copy()
        self._state = StreamState.IN_PROGRESS
        logger.debug(f"Stream started for message {message.id!r}")

    def _on_block_start(self, event: ContentBlockStartEvent) -> None:
        expected = len(self._slots)
        if event.index != expected:
            raise ProtocolViolation(
                f"content_block_start for index {event.index}, "
                f"expected {expected}"
            )
        self._slots.append(_Slot(block=event.content_block.model_copy(deep=True)))

    def _on_block_delta(self, event: ContentBlockDeltaEvent) -> None:
        slot = self._open_slot(event.index, event.type)
        block = slot.block
        delta = event.delta
        if isinstance(delta, TextDelta) and isinstance(block, TextBlock):
            block.text += delta.text
        elif isinstance(delta, ThinkingDelta) and isinstance(block, ThinkingBlock):
            block.thinking += delta.thinking
        elif isinstance(delta, SignatureDelta) and isinstance(block, ThinkingBlock):
            block.signature += delta.signature
        elif isinstance(delta, InputJsonDelta) and isinstance(block, ToolUseBlock):
            slot.json_buffer += delta.partial_json
        else:
            raise ProtocolViolation(
                f"{delta.type} cannot apply to {block.type} block "
                f"at index {event.index}"
            )

    def _on_block_stop(self, event: ContentBlockStopEvent) -> None:
        slot = self._open_slot(event.index, event.type)
        # Blocks stop in the order they started.
        oldest = len(self._content)
        if event.index != oldest:
            raise ProtocolViolation(
                f"content_block_stop for index {event.index} while "
                f"block {oldest} is still open"
            )
        self._slots[event.index] = None
        block = slot.block
        if isinstance(block, ToolUseBlock) and slot.json_buffer.strip():
            try:
                parsed = json.loads(slot.json_buffer)
            except json.JSONDecodeError as e:
                raise ToolInputParseError(
                    event.index, slot.json_buffer, str(e),
                ) from e
            if not isinstance(parsed, dict):
                raise ToolInputParseError(
                    event.index, slot.json_buffer,
                    f"expected a JSON object, got {type(parsed).__name__}",
                )
            block.input = parsed
        self._content.append(block)

    def _on_message_delta(self, event: MessageDeltaEvent) -> None:
        present = event.delta.model_fields_set
        if "stop_reason" in present:
            self._stop_reason = event.delta.stop_reason
        if "stop_sequence" in present:
            self._stop_sequence = event.delta.stop_sequence
        if event.usage is not None:
            self._usage = replace_cumulative(self._usage, event.usage)

    def _on_message_stop(self, event: MessageStopEvent) -> None:
        still_open = [i for i, s in enumerate(self._slots) if s is not None]
        if still_open:
            raise ProtocolViolation(
                f"message_stop with open content blocks {still_open}"
            )
        self._state = StreamState.COMPLETED
        logger.debug(
            f"Stream completed: {len(self._content)} blocks, "
            f"stop_reason={self._stop_reason}"
        )

    def _on_error(self, event: ErrorEvent) -> None:
        raise upstream_error(event.error.type, event.error.message)
