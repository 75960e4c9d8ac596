"""User story tools."""

from typing import Any

from langchain_core.tools import BaseTool, tool
from pydantic import MISSING, Field

from app.clients.taiga import TaigaClient
from app.models.taiga import UserStory
from app.tools.base import (
    ORDER_BY_HELP,
    StoryOrderBy,
    ToolInput,
    apply_limit,
    tool_errors_as_results,
    update_payload,
    with_provenance,
)

# tool parameter -> Taiga field for partial updates
STORY_UPDATE_FIELDS = {
    "subject": "subject",
    "description": "description",
    "milestoneId": "milestone",
    "status": "status",
    "assignedTo": "assigned_to",
    "tags": "tags",
    "isBlocked": "is_blocked",
    "blockedNote": "blocked_note",
}


class GetUserStoriesInput(ToolInput):
    """Filters for listing user stories."""

    projectId: int = Field(..., description="Taiga project ID")
    milestoneId: int | None = Field(None, description="Only stories in this milestone/sprint")
    status: int | None = Field(None, description="Only stories with this status ID")
    assignedTo: int | None = Field(None, description="Only stories assigned to this user ID")
    isClosed: bool | None = Field(None, description="Filter by closed (true) or open (false) stories")
    orderBy: StoryOrderBy | None = Field(None, description=ORDER_BY_HELP)
    limit: int | None = Field(None, description="Maximum number of results to return")


class UserStoryInput(ToolInput):
    userStoryId: int = Field(..., description="User story ID")


class SearchUserStoriesInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    query: str = Field(..., description="Text to search for in subject and description")


class CreateUserStoryInput(ToolInput):
    projectId: int = Field(..., description="Taiga project ID")
    subject: str = Field(..., min_length=1, description="Title of the user story")
    description: str | None = Field(None, description="Detailed description (markdown)")
    milestoneId: int | None = Field(None, description="Milestone/sprint to place the story in")
    tags: list[str] | None = Field(None, description="Tags to assign")


class UpdateUserStoryInput(ToolInput):
    """Only the fields provided are changed; omitted ones stay ``MISSING``."""

    userStoryId: int = Field(..., description="ID of the user story to update")
    subject: str | None | MISSING = Field(MISSING, description="New title")
    description: str | None | MISSING = Field(MISSING, description="New description")
    milestoneId: int | None | MISSING = Field(MISSING, description="New milestone/sprint, null to remove it")
    status: int | None | MISSING = Field(MISSING, description="New status ID")
    assignedTo: int | None | MISSING = Field(MISSING, description="New assignee user ID, null to unassign")
    tags: list[str] | None | MISSING = Field(MISSING, description="New tags (replaces existing tags)")
    isBlocked: bool | None | MISSING = Field(MISSING, description="Mark the story as blocked")
    blockedNote: str | None | MISSING = Field(MISSING, description="Reason the story is blocked")


def summarize_story(story: UserStory) -> dict[str, Any]:
    """Listing shape: never includes the description."""
    return {
        "id": story.id,
        "ref": story.ref,
        "subject": story.subject,
        "status": story.status_extra_info.name if story.status_extra_info else None,
        "status_color": story.status_extra_info.color if story.status_extra_info else None,
        "is_closed": story.is_closed,
        "is_blocked": story.is_blocked,
        "total_points": story.total_points,
        "assigned_to": story.assigned_to_extra_info.display_name if story.assigned_to_extra_info else None,
        "milestone": story.milestone_name,
        "tags": story.tags,
        "created_date": story.created_date,
    }


def story_detail(story: UserStory) -> dict[str, Any]:
    assignee = story.assigned_to_extra_info
    owner = story.owner_extra_info
    return {
        "id": story.id,
        "ref": story.ref,
        "subject": story.subject,
        "description": story.description,
        "status": story.status_extra_info.name if story.status_extra_info else None,
        "status_id": story.status,
        "is_closed": story.is_closed,
        "is_blocked": story.is_blocked,
        "blocked_note": story.blocked_note,
        "total_points": story.total_points,
        "assigned_to": (
            {"id": assignee.id, "username": assignee.username, "full_name": assignee.display_name}
            if assignee
            else None
        ),
        "owner": {"id": owner.id, "username": owner.username, "full_name": owner.display_name} if owner else None,
        "milestone": story.milestone_name,
        "milestone_id": story.milestone,
        "tags": story.tags,
        "created_date": story.created_date,
        "modified_date": story.modified_date,
        "version": story.version,
    }


def create_user_story_tools(client: TaigaClient) -> list[BaseTool]:
    """Build the user story tools bound to ``client``."""

    @tool("get_user_stories", args_schema=GetUserStoriesInput)
    @tool_errors_as_results
    async def get_user_stories(
        projectId: int,
        milestoneId: int | None = None,
        status: int | None = None,
        assignedTo: int | None = None,
        isClosed: bool | None = None,
        orderBy: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List user stories of a project, optionally filtered by sprint,
        status, assignee or closed state. Supports ordering and a maximum
        number of results: for "the last 3 stories" use orderBy=-created_date
        with limit=3."""
        stories = await client.get_user_stories(
            project=projectId,
            milestone=milestoneId,
            status=status,
            assigned_to=assignedTo,
            status__is_closed=isClosed,
            order_by=orderBy,
        )
        return [summarize_story(story) for story in apply_limit(stories, limit)]

    @tool("get_user_story", args_schema=UserStoryInput)
    @tool_errors_as_results
    async def get_user_story(userStoryId: int) -> dict[str, Any]:
        """Get the full details of one user story, including its description."""
        return story_detail(await client.get_user_story(userStoryId))

    @tool("search_user_stories", args_schema=SearchUserStoriesInput)
    @tool_errors_as_results
    async def search_user_stories(projectId: int, query: str) -> list[dict[str, Any]]:
        """Search user stories of a project by text (subject and description)."""
        stories = await client.search_user_stories(projectId, query)
        return [
            {
                "id": story.id,
                "ref": story.ref,
                "subject": story.subject,
                "status": story.status_extra_info.name if story.status_extra_info else None,
                "is_closed": story.is_closed,
                "total_points": story.total_points,
                "assigned_to": story.assigned_to_extra_info.display_name if story.assigned_to_extra_info else None,
            }
            for story in stories
        ]

    @tool("create_user_story", args_schema=CreateUserStoryInput)
    @tool_errors_as_results
    async def create_user_story(
        projectId: int,
        subject: str,
        description: str | None = None,
        milestoneId: int | None = None,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        """Create a new user story in a project. Only the subject is required."""
        signed_description, all_tags = with_provenance(description, tags)
        payload: dict[str, Any] = {
            "project": projectId,
            "subject": subject,
            "description": signed_description,
            "tags": all_tags,
        }
        if milestoneId is not None:
            payload["milestone"] = milestoneId

        story = await client.create_user_story(payload)
        return {
            "id": story.id,
            "ref": story.ref,
            "subject": story.subject,
            "status": story.status_extra_info.name if story.status_extra_info else None,
            "created_date": story.created_date,
            "message": f'User story #{story.ref} "{story.subject}" created successfully',
        }

    @tool("update_user_story", args_schema=UpdateUserStoryInput)
    @tool_errors_as_results
    async def update_user_story(userStoryId: int, **changes: Any) -> dict[str, Any]:
        """Update an existing user story. Only the fields provided are
        modified; pass null for milestoneId or assignedTo to clear them."""
        current = await client.get_user_story(userStoryId)
        payload = update_payload(changes, STORY_UPDATE_FIELDS)
        payload["version"] = current.version

        story = await client.update_user_story(userStoryId, payload)
        return {
            "id": story.id,
            "ref": story.ref,
            "subject": story.subject,
            "status": story.status_extra_info.name if story.status_extra_info else None,
            "modified_date": story.modified_date,
            "message": f"User story #{story.ref} updated successfully",
        }

    return [get_user_stories, get_user_story, search_user_stories, create_user_story, update_user_story]
