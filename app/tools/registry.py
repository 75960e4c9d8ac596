"""Tools registry for the Taiga assistant."""

from langchain_core.tools import BaseTool

from app.clients.taiga import TaigaClient
from app.tools.comments import create_comment_tools
from app.tools.projects import create_project_tools
from app.tools.search import create_search_tools
from app.tools.tasks import create_task_tools
from app.tools.user_stories import create_user_story_tools


class ToolsRegistry:
    """Fixed catalog of Taiga tools bound to one backend connection.

    A registry is built per chat request around that request's
    ``TaigaClient``; nothing is shared between requests.
    """

    def __init__(self, client: TaigaClient):
        self.client = client
        self._tools: dict[str, BaseTool] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        tools = [
            *create_project_tools(self.client),
            *create_user_story_tools(self.client),
            *create_task_tools(self.client),
            *create_search_tools(self.client),
            *create_comment_tools(self.client),
        ]
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool

    @property
    def tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def get_tool(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self._tools


def build_taiga_tools(client: TaigaClient) -> list[BaseTool]:
    """Shortcut for the tool list of a fresh registry."""
    return ToolsRegistry(client).tools
