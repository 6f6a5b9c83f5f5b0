import json

from pydantic import BaseModel, Field, field_serializer

from misanthropy.content import (
    ContentBlock,
    ImageBlock,
    Message,
    RedactedThinkingBlock,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from misanthropy.usage import Usage


class MessagesResponse(BaseModel):
    """A complete (non-streamed, or fully reassembled) API response."""

    id: str = ""
    type: str = "message"
    role: Role = Role.ASSISTANT
    model: str = ""
    content: list[ContentBlock] = Field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Usage = Field(default_factory=Usage)

    @field_serializer("role")
    def serialize_role(self, role: Role, _info) -> str:
        return role.value

    def to_message(self) -> Message:
        """The response content as a conversation turn."""
        return Message(
            role=self.role,
            content=[b.model_copy(deep=True) for b in self.content],
        )

    def format_content(self) -> str:
        """Render every block as plain text, one block per paragraph."""
        return "\n\n".join(_format_block(b) for b in self.content).strip()

    def format_nicely(self) -> str:
        """Render text and images with role prefixes.

        Prefixes are dropped when the output only contains assistant
        text.
        """
        role = self.role.value
        lines = []
        show_roles = self.role == Role.USER
        for block in self.content:
            if isinstance(block, TextBlock):
                lines.append(f"{role}: {block.text}")
            elif isinstance(block, ImageBlock):
                lines.append(
                    f"{role}: [Image: {block.source.type} "
                    f"{block.source.media_type}]"
                )
                show_roles = True
        if not show_roles:
            prefix = f"{role}: "
            lines = [
                line[len(prefix):] if line.startswith(prefix) else line
                for line in lines
            ]
        return "\n".join(lines).strip()


def _format_block(block) -> str:
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ThinkingBlock):
        return f"[thinking]\n{block.thinking}"
    if isinstance(block, RedactedThinkingBlock):
        return "[redacted thinking]"
    if isinstance(block, ImageBlock):
        return f"[Image: {block.source.type} {block.source.media_type}]"
    if isinstance(block, ToolUseBlock):
        return f"[tool_use {block.name} ({block.id})] {json.dumps(block.input)}"
    if isinstance(block, ToolResultBlock):
        status = "error" if block.is_error else "ok"
        body = block.content if isinstance(block.content, str) else " ".join(
            b.text for b in block.content if isinstance(b, TextBlock)
        )
        return f"[tool_result {block.tool_use_id} {status}] {body}"
    raise TypeError(f"Unhandled content block: {type(block).__name__}")
