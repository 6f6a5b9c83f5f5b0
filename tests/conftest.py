import json

import httpx
import pytest

from misanthropy.client import Anthropic
from misanthropy.content import TextBlock, ThinkingBlock, ToolUseBlock
from misanthropy.response import MessagesResponse
from misanthropy.streaming import StreamingResponse
from misanthropy.usage import Usage


# ---------------------------------------------------------------------------
# Raw frame builders (mirror the wire format of the streaming API)
# ---------------------------------------------------------------------------

def message_start(
    msg_id: str = "msg_1",
    model: str = "claude-test",
    input_tokens: int = 10,
    output_tokens: int = 1,
) -> dict:
    return {
        "type": "message_start",
        "message": {
            "id": msg_id,
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
            },
        },
    }


def block_start(index: int, block: dict) -> dict:
    return {"type": "content_block_start", "index": index, "content_block": block}


def text_start(index: int) -> dict:
    return block_start(index, {"type": "text", "text": ""})


def thinking_start(index: int) -> dict:
    return block_start(index, {"type": "thinking", "thinking": "", "signature": ""})


def tool_start(index: int, tool_id: str = "toolu_1", name: str = "get_weather") -> dict:
    return block_start(
        index, {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
    )


def delta(index: int, payload: dict) -> dict:
    return {"type": "content_block_delta", "index": index, "delta": payload}


def text_delta(index: int, value: str) -> dict:
    return delta(index, {"type": "text_delta", "text": value})


def thinking_delta(index: int, value: str) -> dict:
    return delta(index, {"type": "thinking_delta", "thinking": value})


def signature_delta(index: int, value: str) -> dict:
    return delta(index, {"type": "signature_delta", "signature": value})


def json_delta(index: int, value: str) -> dict:
    return delta(index, {"type": "input_json_delta", "partial_json": value})


def block_stop(index: int) -> dict:
    return {"type": "content_block_stop", "index": index}


def message_delta(stop_reason: str | None = "end_turn", **usage) -> dict:
    frame = {
        "type": "message_delta",
        "delta": {"stop_reason": stop_reason, "stop_sequence": None},
    }
    if usage:
        frame["usage"] = usage
    return frame


def message_stop() -> dict:
    return {"type": "message_stop"}


def ping() -> dict:
    return {"type": "ping"}


def error_frame(kind: str, message: str = "") -> dict:
    return {"type": "error", "error": {"type": kind, "message": message}}


def hello_frames() -> list[dict]:
    """The canonical text-only stream: one block reading "Hello"."""
    return [
        message_start(),
        text_start(0),
        text_delta(0, "Hel"),
        text_delta(0, "lo"),
        block_stop(0),
        message_delta("end_turn", input_tokens=10, output_tokens=2),
        message_stop(),
    ]


def tool_frames() -> list[dict]:
    """Thinking, then text, then a tool call split across fragments."""
    return [
        message_start(),
        thinking_start(0),
        thinking_delta(0, "The user wants "),
        thinking_delta(0, "the weather."),
        signature_delta(0, "sig-abc"),
        block_stop(0),
        text_start(1),
        text_delta(1, "Let me check."),
        block_stop(1),
        tool_start(2),
        json_delta(2, '{"locat'),
        json_delta(2, 'ion": "Par'),
        json_delta(2, 'is"}'),
        block_stop(2),
        message_delta("tool_use", output_tokens=42),
        message_stop(),
    ]


def sse_body(frames: list[dict]) -> bytes:
    """Encode frames the way the API sends them."""
    return "".join(
        f"event: {f['type']}\ndata: {json.dumps(f)}\n\n" for f in frames
    ).encode()


def feed_all(frames: list[dict]) -> StreamingResponse:
    stream = StreamingResponse()
    for frame in frames:
        stream.feed(frame)
    return stream


def make_response(
    *blocks,
    stop_reason: str = "end_turn",
    usage: Usage | None = None,
) -> MessagesResponse:
    return MessagesResponse(
        id="msg_full",
        model="claude-test",
        content=list(blocks) or [TextBlock(text="Hi there")],
        stop_reason=stop_reason,
        usage=usage or Usage(input_tokens=12, output_tokens=4),
    )


def make_client(handler) -> Anthropic:
    """Client whose HTTP calls are answered by *handler*, no network."""
    return Anthropic(
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def stream():
    return StreamingResponse()


@pytest.fixture
def started_stream():
    """A stream that has applied message_start and nothing else."""
    s = StreamingResponse()
    s.feed(message_start())
    return s


@pytest.fixture
def mixed_response():
    """A response using every block type that streams with deltas."""
    return make_response(
        ThinkingBlock(thinking="Let me think.", signature="sig-1"),
        TextBlock(text="It is sunny in Paris."),
        ToolUseBlock(id="toolu_9", name="get_weather", input={"location": "Paris"}),
        stop_reason="tool_use",
        usage=Usage(
            input_tokens=30,
            output_tokens=17,
            cache_creation_input_tokens=5,
            cache_read_input_tokens=2,
        ),
    )
