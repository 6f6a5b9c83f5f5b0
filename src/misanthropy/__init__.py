"""Client for the Anthropic Messages API with streamed-response reassembly."""

from misanthropy.client import (
    ANTHROPIC_API_KEY_ENV,
    ANTHROPIC_API_VERSION,
    DEFAULT_BASE_URL,
    Anthropic,
    MessageStream,
)
from misanthropy.content import (
    ContentBlock,
    ImageBlock,
    ImageSource,
    Message,
    RedactedThinkingBlock,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    image,
    text,
    tool_result,
)
from misanthropy.errors import (
    BadRequest,
    ConfigurationError,
    DecodeError,
    MisanthropyError,
    ProtocolViolation,
    RateLimitExceeded,
    ToolInputParseError,
    TransportError,
    Unauthorized,
    UpstreamError,
)
from misanthropy.events import StreamEvent, decode_event, response_events
from misanthropy.instrumentation import instrument, uninstrument
from misanthropy.merge import merge_response, merge_streamed_response
from misanthropy.request import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    MessagesRequest,
)
from misanthropy.response import MessagesResponse
from misanthropy.streaming import StreamingResponse, StreamState
from misanthropy.tools import (
    TEXT_EDITOR_37,
    EditorToolAction,
    TextEditorTool,
    Tool,
    ToolChoice,
    parse_editor_action,
)
from misanthropy.usage import Usage

__all__ = [
    "ANTHROPIC_API_KEY_ENV",
    "ANTHROPIC_API_VERSION",
    "DEFAULT_BASE_URL",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODEL",
    "TEXT_EDITOR_37",
    "Anthropic",
    "BadRequest",
    "ConfigurationError",
    "ContentBlock",
    "DecodeError",
    "EditorToolAction",
    "ImageBlock",
    "ImageSource",
    "Message",
    "MessageStream",
    "MessagesRequest",
    "MessagesResponse",
    "MisanthropyError",
    "ProtocolViolation",
    "RateLimitExceeded",
    "RedactedThinkingBlock",
    "Role",
    "StreamEvent",
    "StreamState",
    "StreamingResponse",
    "TextBlock",
    "TextEditorTool",
    "ThinkingBlock",
    "Tool",
    "ToolChoice",
    "ToolInputParseError",
    "ToolResultBlock",
    "ToolUseBlock",
    "TransportError",
    "Unauthorized",
    "UpstreamError",
    "Usage",
    "decode_event",
    "image",
    "instrument",
    "merge_response",
    "merge_streamed_response",
    "parse_editor_action",
    "response_events",
    "text",
    "tool_result",
    "uninstrument",
]
