from typing import Any, Literal

from pydantic import BaseModel, Field

from misanthropy.content import ContentBlock, Message, TextBlock
from misanthropy.tools import TextEditorTool, Tool, ToolChoice

DEFAULT_MODEL = "claude-3-opus-20240229"
DEFAULT_MAX_TOKENS = 1024


class Metadata(BaseModel):
    user_id: str | None = None


class Thinking(BaseModel):
    """Extended thinking configuration; the budget must be at least 1024."""

    type: Literal["enabled"] = "enabled"
    budget_tokens: int = Field(ge=1024)


class MessagesRequest(BaseModel):
    """A request to the Messages API.

    The conversation history lives in ``messages`` and grows through
    :meth:`add_user`, :meth:`add_assistant` and the functions in
    :mod:`misanthropy.merge`.  Optional parameters left as ``None`` are
    omitted from the payload.

    Example::

        request = MessagesRequest(max_tokens=2048, temperature=0.7)
        request.add_user("Hello, Claude!")
    """

    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    messages: list[Message] = Field(default_factory=list)
    system: str | list[TextBlock] | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=0)
    stop_sequences: list[str] | None = None
    tools: list[Tool | TextEditorTool] | None = None
    tool_choice: ToolChoice | None = None
    metadata: Metadata | None = None
    thinking: Thinking | None = None
    stream: bool = False

    def add_message(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def add_user(self, *content: str | ContentBlock) -> Message:
        return self.add_message(Message.user(*content))

    def add_assistant(self, *content: str | ContentBlock) -> Message:
        return self.add_message(Message.assistant(*content))

    def add_tool(self, tool: Tool | TextEditorTool) -> None:
        if self.tools is None:
            self.tools = []
        self.tools.append(tool)

    def with_system(self, system: str | list[TextBlock]) -> "MessagesRequest":
        return self.model_copy(update={"system": system}, deep=True)

    def with_thinking(self, budget_tokens: int) -> "MessagesRequest":
        return self.model_copy(
            update={"thinking": Thinking(budget_tokens=budget_tokens)},
            deep=True,
        )

    def with_metadata(self, user_id: str) -> "MessagesRequest":
        return self.model_copy(
            update={"metadata": Metadata(user_id=user_id)}, deep=True,
        )

    def with_text_editor(self) -> "MessagesRequest":
        copy = self.model_copy(deep=True)
        copy.add_tool(TextEditorTool())
        return copy

    def to_payload(self) -> dict[str, Any]:
        """The JSON body sent to the API."""
        return self.model_dump(mode="json", exclude_none=True)
