"""Comment tools for user stories and tasks.

Taiga stores comments as history entries; new comments are added by
PATCHing the item with a ``comment`` field and its current ``version``.
"""

from typing import Any

from langchain_core.tools import BaseTool, tool
from pydantic import Field

from app.clients.taiga import TaigaClient
from app.models.taiga import HistoryEntry
from app.tools.base import ToolInput, sign_comment, tool_errors_as_results


class UserStoryCommentsInput(ToolInput):
    userStoryId: int = Field(..., description="User story ID")


class TaskCommentsInput(ToolInput):
    taskId: int = Field(..., description="Task ID")


class CreateUserStoryCommentInput(ToolInput):
    userStoryId: int = Field(..., description="User story ID")
    comment: str = Field(..., min_length=1, description="Comment text (markdown)")


class CreateTaskCommentInput(ToolInput):
    taskId: int = Field(..., description="Task ID")
    comment: str = Field(..., min_length=1, description="Comment text (markdown)")


def format_comment(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "author": entry.user.name or entry.user.username,
        "author_username": entry.user.username,
        "created_at": entry.created_at,
        "comment": entry.comment,
        "is_edited": bool(entry.edit_comment_date),
    }


def create_comment_tools(client: TaigaClient) -> list[BaseTool]:
    """Build the comment tools bound to ``client``."""

    @tool("get_user_story_comments", args_schema=UserStoryCommentsInput)
    @tool_errors_as_results
    async def get_user_story_comments(userStoryId: int) -> list[dict[str, Any]]:
        """Get the comments of a user story. Useful to understand the context
        and discussion around it."""
        return [format_comment(entry) for entry in await client.get_comments("userstory", userStoryId)]

    @tool("get_task_comments", args_schema=TaskCommentsInput)
    @tool_errors_as_results
    async def get_task_comments(taskId: int) -> list[dict[str, Any]]:
        """Get the comments of a task."""
        return [format_comment(entry) for entry in await client.get_comments("task", taskId)]

    @tool("create_user_story_comment", args_schema=CreateUserStoryCommentInput)
    @tool_errors_as_results
    async def create_user_story_comment(userStoryId: int, comment: str) -> dict[str, Any]:
        """Add a comment to a user story: notes, questions or updates."""
        story = await client.get_user_story(userStoryId)
        await client.create_comment("userstory", userStoryId, sign_comment(comment), story.version)
        return {
            "success": True,
            "message": f"Comment added to user story #{story.ref}",
            "user_story_ref": story.ref,
        }

    @tool("create_task_comment", args_schema=CreateTaskCommentInput)
    @tool_errors_as_results
    async def create_task_comment(taskId: int, comment: str) -> dict[str, Any]:
        """Add a comment to a task."""
        task = await client.get_task(taskId)
        await client.create_comment("task", taskId, sign_comment(comment), task.version)
        return {
            "success": True,
            "message": f"Comment added to task #{task.ref}",
            "task_ref": task.ref,
        }

    return [get_user_story_comments, get_task_comments, create_user_story_comment, create_task_comment]
