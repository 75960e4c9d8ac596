"""Project-wide search across stories, tasks and issues."""

from typing import Any

from langchain_core.tools import BaseTool, tool
from pydantic import Field

from app.clients.taiga import TaigaClient
from app.models.taiga import SearchItem
from app.tools.base import ToolInput, tool_errors_as_results


class GlobalSearchInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    query: str = Field(..., description="Search text")


def _items(items: list[SearchItem], kind: str) -> list[dict[str, Any]]:
    return [{"id": item.id, "ref": item.ref, "subject": item.subject, "type": kind} for item in items]


def create_search_tools(client: TaigaClient) -> list[BaseTool]:
    @tool("global_search", args_schema=GlobalSearchInput)
    @tool_errors_as_results
    async def global_search(projectId: int, query: str) -> dict[str, Any]:
        """Search a whole project at once: user stories, tasks and issues."""
        results = await client.search(projectId, query)
        return {
            "total_count": results.count,
            "user_stories": _items(results.userstories, "user_story"),
            "tasks": _items(results.tasks, "task"),
            "issues": _items(results.issues, "issue"),
        }

    return [global_search]
