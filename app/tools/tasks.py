"""Task tools."""

from typing import Any

from langchain_core.tools import BaseTool, tool
from pydantic import MISSING, Field

from app.clients.taiga import TaigaClient
from app.models.taiga import Task
from app.tools.base import (
    ORDER_BY_HELP,
    TaskOrderBy,
    ToolInput,
    apply_limit,
    tool_errors_as_results,
    update_payload,
    with_provenance,
)

TASK_UPDATE_FIELDS = {
    "subject": "subject",
    "description": "description",
    "status": "status",
    "assignedTo": "assigned_to",
    "userStoryId": "user_story",
    "milestoneId": "milestone",
    "tags": "tags",
    "isBlocked": "is_blocked",
    "blockedNote": "blocked_note",
}


class GetTasksInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    userStoryId: int | None = Field(None, description="Only tasks of this user story")
    milestoneId: int | None = Field(None, description="Only tasks in this milestone/sprint")
    status: int | None = Field(None, description="Only tasks with this status ID")
    assignedTo: int | None = Field(None, description="Only tasks assigned to this user ID")
    isClosed: bool | None = Field(None, description="Filter by closed (true) or open (false) tasks")
    orderBy: TaskOrderBy | None = Field(None, description=ORDER_BY_HELP)
    limit: int | None = Field(None, description="Maximum number of results to return")


class TaskInput(ToolInput):
    taskId: int = Field(..., description="Task ID")


class SearchTasksInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    query: str = Field(..., description="Text to search for in subject and description")


class CreateTaskInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    subject: str = Field(..., min_length=1, description="Title of the task")
    description: str | None = Field(None, description="Detailed description (markdown)")
    userStoryId: int | None = Field(None, description="User story the task belongs to")
    milestoneId: int | None = Field(None, description="Milestone/sprint of the task")
    assignedTo: int | None = Field(None, description="Assignee user ID")
    tags: list[str] | None = Field(None, description="Tags to assign")


class UpdateTaskInput(ToolInput):
    taskId: int = Field(..., description="ID of the task to update")
    subject: str | None | MISSING = Field(MISSING, description="New title")
    description: str | None | MISSING = Field(MISSING, description="New description")
    status: int | None | MISSING = Field(MISSING, description="New status ID")
    assignedTo: int | None | MISSING = Field(MISSING, description="New assignee user ID, null to unassign")
    userStoryId: int | None | MISSING = Field(MISSING, description="Move the task to another user story")
    milestoneId: int | None | MISSING = Field(MISSING, description="New milestone/sprint, null to remove it")
    tags: list[str] | None | MISSING = Field(MISSING, description="New tags (replaces existing tags)")
    isBlocked: bool | None | MISSING = Field(MISSING, description="Mark the task as blocked")
    blockedNote: str | None | MISSING = Field(MISSING, description="Reason the task is blocked")


def summarize_task(task: Task) -> dict[str, Any]:
    story = task.user_story_extra_info
    return {
        "id": task.id,
        "ref": task.ref,
        "subject": task.subject,
        "status": task.status_extra_info.name if task.status_extra_info else None,
        "is_closed": task.is_closed,
        "is_blocked": task.is_blocked,
        "assigned_to": task.assigned_to_extra_info.display_name if task.assigned_to_extra_info else None,
        "user_story": {"id": story.id, "ref": story.ref, "subject": story.subject} if story else None,
        "tags": task.tags,
        "created_date": task.created_date,
    }


def task_detail(task: Task) -> dict[str, Any]:
    detail = summarize_task(task)
    assignee = task.assigned_to_extra_info
    owner = task.owner_extra_info
    detail.update(
        {
            "description": task.description,
            "status_id": task.status,
            "blocked_note": task.blocked_note,
            "assigned_to": (
                {"id": assignee.id, "username": assignee.username, "full_name": assignee.display_name}
                if assignee
                else None
            ),
            "owner": {"id": owner.id, "username": owner.username, "full_name": owner.display_name} if owner else None,
            "milestone_id": task.milestone,
            "modified_date": task.modified_date,
            "version": task.version,
        }
    )
    return detail


def create_task_tools(client: TaigaClient) -> list[BaseTool]:
    """Build the task tools bound to ``client``."""

    @tool("get_tasks", args_schema=GetTasksInput)
    @tool_errors_as_results
    async def get_tasks(
        projectId: int,
        userStoryId: int | None = None,
        milestoneId: int | None = None,
        status: int | None = None,
        assignedTo: int | None = None,
        isClosed: bool | None = None,
        orderBy: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks of a project, optionally filtered by user story, sprint,
        status, assignee or closed state. Supports ordering and a maximum
        number of results."""
        tasks = await client.get_tasks(
            project=projectId,
            user_story=userStoryId,
            milestone=milestoneId,
            status=status,
            assigned_to=assignedTo,
            status__is_closed=isClosed,
            order_by=orderBy,
        )
        return [summarize_task(task) for task in apply_limit(tasks, limit)]

    @tool("get_task", args_schema=TaskInput)
    @tool_errors_as_results
    async def get_task(taskId: int) -> dict[str, Any]:
        """Get the full details of one task, including its description."""
        return task_detail(await client.get_task(taskId))

    @tool("search_tasks", args_schema=SearchTasksInput)
    @tool_errors_as_results
    async def search_tasks(projectId: int, query: str) -> list[dict[str, Any]]:
        """Search tasks of a project by text."""
        tasks = await client.search_tasks(projectId, query)
        return [
            {
                "id": task.id,
                "ref": task.ref,
                "subject": task.subject,
                "status": task.status_extra_info.name if task.status_extra_info else None,
                "is_closed": task.is_closed,
                "assigned_to": task.assigned_to_extra_info.display_name if task.assigned_to_extra_info else None,
            }
            for task in tasks
        ]

    @tool("create_task", args_schema=CreateTaskInput)
    @tool_errors_as_results
    async def create_task(
        projectId: int,
        subject: str,
        description: str | None = None,
        userStoryId: int | None = None,
        milestoneId: int | None = None,
        assignedTo: int | None = None,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        """Create a new task in a project, optionally attached to a user story."""
        signed_description, all_tags = with_provenance(description, tags)
        payload: dict[str, Any] = {
            "project": projectId,
            "subject": subject,
            "description": signed_description,
            "tags": all_tags,
        }
        for name, value in (("user_story", userStoryId), ("milestone", milestoneId), ("assigned_to", assignedTo)):
            if value is not None:
                payload[name] = value

        task = await client.create_task(payload)
        return {
            "id": task.id,
            "ref": task.ref,
            "subject": task.subject,
            "status": task.status_extra_info.name if task.status_extra_info else None,
            "created_date": task.created_date,
            "message": f'Task #{task.ref} "{task.subject}" created successfully',
        }

    @tool("update_task", args_schema=UpdateTaskInput)
    @tool_errors_as_results
    async def update_task(taskId: int, **changes: Any) -> dict[str, Any]:
        """Update an existing task. Only the fields provided are modified;
        pass null for assignedTo to unassign."""
        current = await client.get_task(taskId)
        payload = update_payload(changes, TASK_UPDATE_FIELDS)
        payload["version"] = current.version

        task = await client.update_task(taskId, payload)
        return {
            "id": task.id,
            "ref": task.ref,
            "subject": task.subject,
            "status": task.status_extra_info.name if task.status_extra_info else None,
            "modified_date": task.modified_date,
            "message": f"Task #{task.ref} updated successfully",
        }

    return [get_tasks, get_task, search_tasks, create_task, update_task]
