"""Tool definitions sent with a request, and the built-in text editor.

Tool input schemas are passed through as-is; nothing here validates
tool input against them.
"""

import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from misanthropy.content import ToolUseBlock

TEXT_EDITOR_37 = "text_editor_20250124"
TEXT_EDITOR_NAME = "str_replace_editor"


def _normalize_tool_name(name: str) -> str:
    """Turn a class name into a snake_case tool name.

    E.g. ``"GetStockPrice"`` becomes ``"get_stock_price"``.
    """
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name.strip())
    name = re.sub(r"[\s\-]+", "_", name.lower())
    return re.sub(r"[^a-z0-9_]", "", name)


class Tool(BaseModel):
    """A client-side tool the model may call.

    Args:
        name: Tool name the model uses in ``tool_use`` blocks.
        description: Shown to the model.
        input_schema: JSON schema for the tool's ``input`` object.
    """

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    cache_control: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, model: type[BaseModel]) -> "Tool":
        """Derive a tool from a pydantic model describing its input.

        The model's docstring becomes the description::

            class GetStockPrice(BaseModel):
                \"\"\"Get the current stock price for a ticker.\"\"\"
                ticker: str

            Tool.from_model(GetStockPrice).name  # "get_stock_price"
        """
        schema = model.model_json_schema()
        schema.pop("title", None)
        doc = (model.__doc__ or "").strip() or None
        return cls(
            name=_normalize_tool_name(model.__name__),
            description=doc,
            input_schema=schema,
        )


class TextEditorTool(BaseModel):
    """The server-defined text editor tool."""

    type: str = TEXT_EDITOR_37
    name: str = TEXT_EDITOR_NAME
    cache_control: dict[str, Any] | None = None


class ToolChoice(BaseModel):
    """How the model should pick tools.

    ``type`` is one of ``"auto"``, ``"any"``, ``"tool"`` or ``"none"``;
    ``name`` is required for ``"tool"``.
    """

    type: Literal["auto", "any", "tool", "none"] = "auto"
    name: str | None = None
    disable_parallel_tool_use: bool | None = None


# ---------------------------------------------------------------------------
# Text editor commands
# ---------------------------------------------------------------------------

class ViewAction(BaseModel):
    command: Literal["view"] = "view"
    path: str
    view_range: list[int] | None = None


class StrReplaceAction(BaseModel):
    command: Literal["str_replace"] = "str_replace"
    path: str
    old_str: str
    new_str: str = ""


class CreateAction(BaseModel):
    command: Literal["create"] = "create"
    path: str
    file_text: str


class InsertAction(BaseModel):
    command: Literal["insert"] = "insert"
    path: str
    insert_line: int
    new_str: str


class UndoEditAction(BaseModel):
    command: Literal["undo_edit"] = "undo_edit"
    path: str


EditorToolAction = Annotated[
    Union[
        ViewAction,
        StrReplaceAction,
        CreateAction,
        InsertAction,
        UndoEditAction,
    ],
    Field(discriminator="command"),
]

_editor_adapter: TypeAdapter[EditorToolAction] = TypeAdapter(EditorToolAction)


def parse_editor_action(block: ToolUseBlock) -> EditorToolAction:
    """Read a text editor ``tool_use`` block's input as a typed command.

    Raises:
        pydantic.ValidationError: If the input is not a known command.
    """
    return _editor_adapter.validate_python(block.input)
