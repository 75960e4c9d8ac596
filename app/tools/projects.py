"""Project and milestone (sprint) tools."""

from typing import Any

from langchain_core.tools import BaseTool, tool
from pydantic import Field

from app.clients.taiga import TaigaClient
from app.models.taiga import Milestone, Project, UserStory
from app.tools.base import NoInput, ToolInput, tool_errors_as_results

PROJECT_DESCRIPTION_PREVIEW = 200


class ProjectInput(ToolInput):
    """Input schema for project-scoped tools."""

    projectId: int = Field(..., description="Taiga project ID", examples=[1, 42])


class MilestoneInput(ToolInput):
    """Input schema for milestone-scoped tools."""

    milestoneId: int = Field(..., description="Taiga milestone/sprint ID", examples=[7])


def summarize_project(project: Project) -> dict[str, Any]:
    description = project.description[:PROJECT_DESCRIPTION_PREVIEW] if project.description else project.description
    return {
        "id": project.id,
        "name": project.name,
        "slug": project.slug,
        "description": description,
        "is_private": project.is_private,
        "total_milestones": project.total_milestones,
        "members_count": len(project.members),
    }


def summarize_milestone(milestone: Milestone) -> dict[str, Any]:
    return {
        "id": milestone.id,
        "name": milestone.name,
        "slug": milestone.slug,
        "estimated_start": milestone.estimated_start,
        "estimated_finish": milestone.estimated_finish,
        "closed": milestone.closed,
        "total_points": milestone.total_points,
        "closed_points": milestone.closed_points,
        "user_stories_count": len(milestone.user_stories),
    }


def _milestone_story(story: UserStory) -> dict[str, Any]:
    return {
        "id": story.id,
        "ref": story.ref,
        "subject": story.subject,
        "status": story.status_extra_info.name if story.status_extra_info else None,
        "is_closed": story.is_closed,
        "total_points": story.total_points,
    }


def create_project_tools(client: TaigaClient) -> list[BaseTool]:
    """Build the project tools bound to ``client``."""

    @tool("get_projects", args_schema=NoInput)
    @tool_errors_as_results
    async def get_projects() -> list[dict[str, Any]]:
        """List every Taiga project the user can access.

        Returns id, name, slug, a short description, privacy flag, number of
        milestones and number of members for each project.
        """
        projects = await client.get_projects()
        return [summarize_project(project) for project in projects]

    @tool("get_project", args_schema=ProjectInput)
    @tool_errors_as_results
    async def get_project(projectId: int) -> dict[str, Any]:
        """Get the details of one project by ID: owner, members, user story
        statuses and task statuses. Use the status IDs when filtering or
        updating stories and tasks."""
        project = await client.get_project(projectId)
        return {
            "id": project.id,
            "name": project.name,
            "slug": project.slug,
            "description": project.description,
            "created_date": project.created_date,
            "is_private": project.is_private,
            "owner": (
                {
                    "id": project.owner.id,
                    "username": project.owner.username,
                    "full_name": project.owner.display_name,
                }
                if project.owner
                else None
            ),
            "members": [
                {"id": m.id, "username": m.username, "full_name": m.full_name, "role_name": m.role_name}
                for m in project.members
            ],
            "us_statuses": [{"id": s.id, "name": s.name, "is_closed": s.is_closed} for s in project.us_statuses],
            "task_statuses": [{"id": s.id, "name": s.name, "is_closed": s.is_closed} for s in project.task_statuses],
        }

    @tool("get_project_stats", args_schema=ProjectInput)
    @tool_errors_as_results
    async def get_project_stats(projectId: int) -> dict[str, Any]:
        """Get project statistics: total and closed points, user stories,
        tasks and velocity."""
        return await client.get_project_stats(projectId)

    @tool("get_milestones", args_schema=ProjectInput)
    @tool_errors_as_results
    async def get_milestones(projectId: int) -> list[dict[str, Any]]:
        """List all sprints/milestones of a project with dates, points and
        number of user stories."""
        milestones = await client.get_milestones(projectId)
        return [summarize_milestone(milestone) for milestone in milestones]

    @tool("get_milestone", args_schema=MilestoneInput)
    @tool_errors_as_results
    async def get_milestone(milestoneId: int) -> dict[str, Any]:
        """Get one sprint/milestone including its user stories."""
        milestone = await client.get_milestone(milestoneId)
        summary = summarize_milestone(milestone)
        del summary["user_stories_count"]
        summary["user_stories"] = [_milestone_story(story) for story in milestone.user_stories]
        return summary

    @tool("get_milestone_stats", args_schema=MilestoneInput)
    @tool_errors_as_results
    async def get_milestone_stats(milestoneId: int) -> dict[str, Any]:
        """Get detailed sprint statistics: progress, burndown and completed
        tasks."""
        return await client.get_milestone_stats(milestoneId)

    return [get_projects, get_project, get_project_stats, get_milestones, get_milestone, get_milestone_stats]
