"""Shared helpers for Taiga tools."""

import functools
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal, TypeVar

from pydantic import MISSING, BaseModel, ConfigDict

from app.clients.taiga import TaigaApiError
from app.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ToolResult = dict[str, Any] | list[dict[str, Any]]
ToolHandler = Callable[..., Awaitable[ToolResult]]

AI_TAG = "🤖ai-generated"
AI_SIGNATURE = "_🤖 Created by Taiga AI Assistant_"
AI_DESCRIPTION_SUFFIX = f"\n\n---\n{AI_SIGNATURE}"
AI_COMMENT_SUFFIX = "\n\n_🤖 Comment created by Taiga AI Assistant_"

StoryOrderBy = Literal[
    "created_date",
    "-created_date",
    "modified_date",
    "-modified_date",
    "ref",
    "-ref",
    "subject",
    "-subject",
    "total_points",
    "-total_points",
]
TaskOrderBy = Literal[
    "created_date",
    "-created_date",
    "modified_date",
    "-modified_date",
    "ref",
    "-ref",
    "subject",
    "-subject",
]

ORDER_BY_HELP = (
    "Field to sort by. Prefix with - for descending order "
    "(e.g. -created_date returns the most recent first)."
)


class ToolInput(BaseModel):
    """Base input schema: field names are the parameter names the model sees."""

    model_config = ConfigDict(extra="ignore")


class NoInput(ToolInput):
    """Input schema for tools without parameters."""


def sign_description(description: str | None) -> str:
    return f"{description}{AI_DESCRIPTION_SUFFIX}" if description else AI_SIGNATURE


def mark_tags(tags: list[str] | None) -> list[str]:
    tags = list(tags or [])
    return tags if AI_TAG in tags else [*tags, AI_TAG]


def with_provenance(description: str | None, tags: list[str] | None) -> tuple[str, list[str]]:
    """Mark agent-created content: signed description and the AI tag."""
    return sign_description(description), mark_tags(tags)


def update_payload(changes: dict[str, Any], fields: dict[str, str]) -> dict[str, Any]:
    """Backend payload for the update arguments the caller actually supplied.

    Arguments left out arrive as ``MISSING`` (or not at all) and are skipped;
    an explicit ``None`` is kept so the field is cleared. A new description is
    signed and replaced tags keep the AI tag.
    """
    payload = {fields[name]: value for name, value in changes.items() if name in fields and value is not MISSING}
    if "description" in payload:
        payload["description"] = sign_description(payload["description"])
    if "tags" in payload:
        payload["tags"] = mark_tags(payload["tags"])
    return payload


def sign_comment(comment: str) -> str:
    return f"{comment}{AI_COMMENT_SUFFIX}"


def apply_limit(items: Sequence[T], limit: int | None) -> list[T]:
    """Truncate after full retrieval; no limit (or 0) keeps everything."""
    return list(items[:limit]) if limit else list(items)


def tool_errors_as_results(handler: ToolHandler) -> ToolHandler:
    """Turn any failure inside a tool handler into an ``{"error": ...}`` result.

    The model sees the error as the tool's output and can explain it to the
    user; the turn itself keeps going.
    """

    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> ToolResult:
        try:
            return await handler(*args, **kwargs)
        except TaigaApiError as e:
            logger.warning(f"Tool {handler.__name__} failed ({e.status_code}): {e.message}")
            return {"error": e.message}
        except Exception as e:
            logger.error(f"Tool {handler.__name__} crashed: {e}", exc_info=True)
            return {"error": str(e) or "Unknown error"}

    return wrapper
