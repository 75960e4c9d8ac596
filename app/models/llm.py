"""Content blocks exchanged with the model provider."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class BlockModel(BaseModel):
    # Ignore any additional fields from Anthropic
    model_config = ConfigDict(extra="ignore")


class TextBlock(BlockModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BlockModel):
    """Extended-thinking block; must be sent back unchanged with its signature."""

    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str


class ToolUseBlock(BlockModel):
    """Tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any]


class ToolResultBlock(BlockModel):
    """Tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock


def text_of(blocks: list[ContentBlock]) -> str:
    """Concatenated text of the text blocks."""
    return "".join(block.text for block in blocks if isinstance(block, TextBlock))
