"""Tests for the Taiga tools and their registry."""

import json

import pytest
from pydantic import MISSING, ValidationError

from app.tools.base import (
    AI_COMMENT_SUFFIX,
    AI_DESCRIPTION_SUFFIX,
    AI_SIGNATURE,
    AI_TAG,
    apply_limit,
    update_payload,
    with_provenance,
)
from app.tools.registry import ToolsRegistry
from conftest import make_project, make_story, make_task

EXPECTED_TOOLS = {
    "get_projects",
    "get_project",
    "get_project_stats",
    "get_milestones",
    "get_milestone",
    "get_milestone_stats",
    "get_user_stories",
    "get_user_story",
    "search_user_stories",
    "create_user_story",
    "update_user_story",
    "get_tasks",
    "get_task",
    "search_tasks",
    "create_task",
    "update_task",
    "global_search",
    "get_user_story_comments",
    "get_task_comments",
    "create_user_story_comment",
    "create_task_comment",
}


@pytest.fixture
def registry(taiga_backend):
    return ToolsRegistry(taiga_backend.client())


async def call(registry: ToolsRegistry, name: str, **arguments):
    return await registry.get_tool(name).ainvoke(arguments)


class TestHelpers:
    """Tests for shared tool helpers."""

    def test_provenance_with_description(self):
        description, tags = with_provenance("Details", ["backend"])
        assert description == f"Details{AI_DESCRIPTION_SUFFIX}"
        assert tags == ["backend", AI_TAG]

    def test_provenance_without_description(self):
        description, tags = with_provenance(None, None)
        assert description == AI_SIGNATURE
        assert tags == [AI_TAG]

    def test_apply_limit(self):
        assert apply_limit([1, 2, 3], 2) == [1, 2]
        assert apply_limit([1, 2, 3], None) == [1, 2, 3]
        assert apply_limit([1, 2, 3], 0) == [1, 2, 3]

    def test_update_payload_skips_missing_arguments(self):
        fields = {"status": "status", "assignedTo": "assigned_to", "subject": "subject"}
        payload = update_payload({"status": 3, "assignedTo": None, "subject": MISSING}, fields)
        assert payload == {"status": 3, "assigned_to": None}

    def test_update_payload_marks_edited_content(self):
        fields = {"description": "description", "tags": "tags"}
        assert update_payload({"description": "New text", "tags": ["ui", AI_TAG]}, fields) == {
            "description": f"New text{AI_DESCRIPTION_SUFFIX}",
            "tags": ["ui", AI_TAG],
        }


class TestRegistry:
    """Tests for the tool catalog."""

    def test_catalog_names(self, registry):
        assert set(registry.get_tool_names()) == EXPECTED_TOOLS
        assert len(registry.tools) == len(EXPECTED_TOOLS)

    def test_lookup(self, registry):
        assert registry.has_tool("global_search")
        assert registry.get_tool("missing") is None

    def test_schemas_use_parameter_names(self, registry):
        """The model sees camelCase parameter names."""
        schema = registry.get_tool("update_user_story").get_input_schema().model_json_schema()
        assert "userStoryId" in schema["properties"]
        assert "milestoneId" in schema["properties"]
        assert schema["required"] == ["userStoryId"]

    def test_every_tool_has_description(self, registry):
        for tool in registry.tools:
            assert tool.description, tool.name


class TestProjectTools:
    """Tests for project and milestone tools."""

    @pytest.mark.asyncio
    async def test_get_projects_summary(self, registry, taiga_backend):
        taiga_backend.add("GET", "/projects", [make_project(1), make_project(2, description=None)])

        result = await call(registry, "get_projects")

        assert [p["id"] for p in result] == [1, 2]
        assert len(result[0]["description"]) == 200
        assert result[0]["members_count"] == 3
        assert result[1]["description"] is None

    @pytest.mark.asyncio
    async def test_auth_header_sent(self, registry, taiga_backend):
        taiga_backend.add("GET", "/projects", [])
        await call(registry, "get_projects")
        assert taiga_backend.requests[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_get_milestone_lists_stories(self, registry, taiga_backend):
        taiga_backend.add(
            "GET",
            "/milestones/7",
            {"id": 7, "name": "Sprint 1", "closed": False, "user_stories": [make_story(10), make_story(11)]},
        )

        result = await call(registry, "get_milestone", milestoneId=7)

        assert result["name"] == "Sprint 1"
        assert [s["id"] for s in result["user_stories"]] == [10, 11]
        assert "user_stories_count" not in result

    @pytest.mark.asyncio
    async def test_backend_error_becomes_result(self, registry, taiga_backend):
        """Tool failures are returned to the model, not raised."""
        result = await call(registry, "get_project", projectId=99)
        assert result == {"error": "No encontrado."}


class TestUserStoryTools:
    """Tests for user story tools."""

    @pytest.mark.asyncio
    async def test_listing_filters_and_limit(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories", [make_story(i) for i in range(1, 6)])

        result = await call(registry, "get_user_stories", projectId=3, isClosed=False, orderBy="-created_date", limit=2)

        params = taiga_backend.requests[0].url.params
        assert params["project"] == "3"
        assert params["status__is_closed"] == "false"
        assert params["order_by"] == "-created_date"
        assert "milestone" not in params
        assert len(result) == 2
        assert "description" not in result[0]

    @pytest.mark.asyncio
    async def test_invalid_order_by_rejected(self, registry):
        with pytest.raises(ValidationError):
            await call(registry, "get_user_stories", projectId=3, orderBy="priority")

    @pytest.mark.asyncio
    async def test_detail_includes_description(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories/10", make_story(10))

        result = await call(registry, "get_user_story", userStoryId=10)

        assert result["description"] == "Long description that listings must not include"
        assert result["owner"]["full_name"] == "Ana García"
        assert result["version"] == 4

    @pytest.mark.asyncio
    async def test_create_marks_provenance(self, registry, taiga_backend):
        taiga_backend.add("POST", "/userstories", make_story(30, subject="Login"))

        result = await call(registry, "create_user_story", projectId=3, subject="Login", tags=["auth"])

        body = taiga_backend.sent_json("POST", "/userstories")
        assert body["project"] == 3
        assert body["description"] == AI_SIGNATURE
        assert body["tags"] == ["auth", AI_TAG]
        assert "milestone" not in body
        assert result["message"] == 'User story #130 "Login" created successfully'

    @pytest.mark.asyncio
    async def test_update_sends_only_supplied_fields(self, registry, taiga_backend):
        """The current version is fetched first; unset fields are not sent."""
        taiga_backend.add("GET", "/userstories/10", make_story(10, version=7))
        taiga_backend.add("PATCH", "/userstories/10", make_story(10, subject="Renamed", version=8))

        result = await call(registry, "update_user_story", userStoryId=10, subject="Renamed", milestoneId=None)

        assert taiga_backend.sent_json("PATCH", "/userstories/10") == {
            "subject": "Renamed",
            "milestone": None,
            "version": 7,
        }
        assert result["subject"] == "Renamed"

    @pytest.mark.asyncio
    async def test_update_version_conflict(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories/10", make_story(10))
        taiga_backend.add(
            "PATCH",
            "/userstories/10",
            {"_error_message": "The version doesn't match with the current one", "_error_type": "WrongArguments"},
            status=400,
        )

        result = await call(registry, "update_user_story", userStoryId=10, status=2)

        assert result == {"error": "The version doesn't match with the current one"}

    @pytest.mark.asyncio
    async def test_status_change_leaves_other_fields_alone(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories/10", make_story(10, version=7))
        taiga_backend.add("PATCH", "/userstories/10", make_story(10, status=3, version=8))

        await call(registry, "update_user_story", userStoryId=10, status=3)

        assert taiga_backend.sent_json("PATCH", "/userstories/10") == {"status": 3, "version": 7}

    @pytest.mark.asyncio
    async def test_edited_description_and_tags_are_marked(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories/10", make_story(10, version=7))
        taiga_backend.add("PATCH", "/userstories/10", make_story(10, version=8))

        await call(registry, "update_user_story", userStoryId=10, description="New text", tags=["mobile"])

        assert taiga_backend.sent_json("PATCH", "/userstories/10") == {
            "description": f"New text{AI_DESCRIPTION_SUFFIX}",
            "tags": ["mobile", AI_TAG],
            "version": 7,
        }

    @pytest.mark.asyncio
    async def test_consecutive_updates_use_fresh_version(self, registry, taiga_backend):
        """Each update re-reads the story, so a version bumped in between is used."""
        taiga_backend.add("GET", "/userstories/10", make_story(10, version=7))
        taiga_backend.add("PATCH", "/userstories/10", make_story(10, version=8))
        await call(registry, "update_user_story", userStoryId=10, status=2)

        taiga_backend.add("GET", "/userstories/10", make_story(10, version=8))
        taiga_backend.add("PATCH", "/userstories/10", make_story(10, version=9))
        await call(registry, "update_user_story", userStoryId=10, subject="Renamed")

        patches = taiga_backend.sent("PATCH", "/userstories/10")
        assert [json.loads(request.content)["version"] for request in patches] == [7, 8]
        assert len(taiga_backend.sent("GET", "/userstories/10")) == 2

    @pytest.mark.asyncio
    async def test_search_uses_query(self, registry, taiga_backend):
        taiga_backend.add("GET", "/userstories", [make_story(10)])

        result = await call(registry, "search_user_stories", projectId=3, query="login")

        assert taiga_backend.requests[0].url.params["q"] == "login"
        assert result[0]["subject"] == "Story 10"


class TestTaskTools:
    """Tests for task tools."""

    @pytest.mark.asyncio
    async def test_listing_by_story(self, registry, taiga_backend):
        taiga_backend.add("GET", "/tasks", [make_task(20), make_task(21)])

        result = await call(registry, "get_tasks", projectId=3, userStoryId=10)

        assert taiga_backend.requests[0].url.params["user_story"] == "10"
        assert result[0]["user_story"] == {"id": 10, "ref": 110, "subject": "Story 10"}
        assert result[0]["assigned_to"] == "Ana García"

    @pytest.mark.asyncio
    async def test_create_task(self, registry, taiga_backend):
        taiga_backend.add("POST", "/tasks", make_task(40, subject="Update docs"))

        await call(registry, "create_task", projectId=3, subject="Update docs", description="Steps", userStoryId=12)

        body = taiga_backend.sent_json("POST", "/tasks")
        assert body["user_story"] == 12
        assert body["description"] == f"Steps{AI_DESCRIPTION_SUFFIX}"
        assert "assigned_to" not in body

    @pytest.mark.asyncio
    async def test_update_unassign(self, registry, taiga_backend):
        taiga_backend.add("GET", "/tasks/20", make_task(20, version=3))
        taiga_backend.add("PATCH", "/tasks/20", make_task(20, assigned_to=None, assigned_to_extra_info=None))

        await call(registry, "update_task", taskId=20, assignedTo=None, milestoneId=5)

        assert taiga_backend.sent_json("PATCH", "/tasks/20") == {"assigned_to": None, "milestone": 5, "version": 3}

    @pytest.mark.asyncio
    async def test_update_task_description_is_marked(self, registry, taiga_backend):
        taiga_backend.add("GET", "/tasks/20", make_task(20, version=3))
        taiga_backend.add("PATCH", "/tasks/20", make_task(20, version=4))

        await call(registry, "update_task", taskId=20, description="Use the v2 endpoint", tags=[AI_TAG])

        assert taiga_backend.sent_json("PATCH", "/tasks/20") == {
            "description": f"Use the v2 endpoint{AI_DESCRIPTION_SUFFIX}",
            "tags": [AI_TAG],
            "version": 3,
        }


class TestSearchAndComments:
    """Tests for global search and comment tools."""

    @pytest.mark.asyncio
    async def test_global_search(self, registry, taiga_backend):
        taiga_backend.add(
            "GET",
            "/search",
            {
                "count": 3,
                "userstories": [{"id": 1, "ref": 5, "subject": "Login"}],
                "tasks": [{"id": 2, "ref": 6, "subject": "Login form"}],
                "issues": [{"id": 3, "ref": 7, "subject": "Login broken"}],
                "wikipages": [],
            },
        )

        result = await call(registry, "global_search", projectId=3, query="login")

        assert taiga_backend.requests[0].url.params["text"] == "login"
        assert result["total_count"] == 3
        assert result["user_stories"] == [{"id": 1, "ref": 5, "subject": "Login", "type": "user_story"}]
        assert result["tasks"][0]["type"] == "task"
        assert result["issues"][0]["type"] == "issue"

    @pytest.mark.asyncio
    async def test_comments_skip_plain_history(self, registry, taiga_backend):
        taiga_backend.add(
            "GET",
            "/history/userstory/10",
            [
                {"id": "h1", "user": {"pk": 5, "username": "ana", "name": "Ana"}, "comment": "Looks good"},
                {"id": "h2", "user": {"pk": 5, "username": "ana"}, "comment": ""},
                {"id": "h3", "user": {"pk": 6, "username": "luis"}, "comment": "Edited", "edit_comment_date": "x"},
            ],
        )

        result = await call(registry, "get_user_story_comments", userStoryId=10)

        assert [c["id"] for c in result] == ["h1", "h3"]
        assert result[0]["author"] == "Ana"
        assert result[1]["author"] == "luis"
        assert result[1]["is_edited"] is True

    @pytest.mark.asyncio
    async def test_create_comment_signed_with_version(self, registry, taiga_backend):
        taiga_backend.add("GET", "/tasks/20", make_task(20, version=9))
        taiga_backend.add("PATCH", "/tasks/20", make_task(20, version=10))

        result = await call(registry, "create_task_comment", taskId=20, comment="Blocked by API")

        assert taiga_backend.sent_json("PATCH", "/tasks/20") == {
            "comment": f"Blocked by API{AI_COMMENT_SUFFIX}",
            "version": 9,
        }
        assert result == {"success": True, "message": "Comment added to task #120", "task_ref": 120}
