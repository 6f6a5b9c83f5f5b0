"""Content blocks and conversation messages.

A :class:`Message` is a role plus an ordered list of content blocks.
Blocks are a closed set of pydantic models discriminated on their
``type`` field, so ``ContentBlockAdapter.validate_python(raw)`` always
yields the right variant (or fails).
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_serializer


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class _Block(BaseModel):
    cache_control: dict[str, Any] | None = None


class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(_Block):
    """Extended reasoning trace.

    ``signature`` stays empty until the block is complete.
    """

    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str = ""


class RedactedThinkingBlock(_Block):
    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str


class ImageSource(BaseModel):
    type: str = "base64"
    media_type: str
    data: str


class ImageBlock(_Block):
    type: Literal["image"] = "image"
    source: ImageSource


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(_Block):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str | list[Annotated[
        Union[TextBlock, ImageBlock], Field(discriminator="type")
    ]] = ""
    is_error: bool = False


ContentBlock = Annotated[
    Union[
        TextBlock,
        ThinkingBlock,
        RedactedThinkingBlock,
        ImageBlock,
        ToolUseBlock,
        ToolResultBlock,
    ],
    Field(discriminator="type"),
]

ContentBlockAdapter: TypeAdapter[ContentBlock] = TypeAdapter(ContentBlock)


def text(value: str) -> TextBlock:
    return TextBlock(text=value)


def image(media_type: str, data: str) -> ImageBlock:
    """Build a base64 image block, e.g. ``image("image/png", b64)``."""
    return ImageBlock(source=ImageSource(media_type=media_type, data=data))


def tool_result(
    tool_use_id: str,
    content: str | list[TextBlock | ImageBlock],
    is_error: bool = False,
) -> ToolResultBlock:
    """Build the block that answers a ``tool_use`` with the same id."""
    return ToolResultBlock(
        tool_use_id=tool_use_id, content=content, is_error=is_error,
    )


def _as_blocks(content) -> list:
    return [text(c) if isinstance(c, str) else c for c in content]


class Message(BaseModel):
    role: Role
    content: list[ContentBlock] = Field(default_factory=list)

    @field_serializer("role")
    def serialize_role(self, role: Role, _info) -> str:
        return role.value

    @classmethod
    def user(cls, *content: str | ContentBlock) -> Message:
        return cls(role=Role.USER, content=_as_blocks(content))

    @classmethod
    def assistant(cls, *content: str | ContentBlock) -> Message:
        return cls(role=Role.ASSISTANT, content=_as_blocks(content))

    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(
            b.text for b in self.content if isinstance(b, TextBlock)
        )
