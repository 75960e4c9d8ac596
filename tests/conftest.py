"""Shared fixtures: a scripted model client and a fake Taiga backend."""

import json
from typing import Any

import httpx
import pytest

from app.clients.anthropic import AnthropicResponse, TokenUsage
from app.clients.taiga import TaigaClient
from app.models.llm import ContentBlock, TextBlock, ThinkingBlock, ToolUseBlock

TAIGA_URL = "https://taiga.test/api/v1"


class ScriptedAnthropicClient:
    """Stands in for AnthropicClient, replaying one scripted response per call."""

    def __init__(self, responses: list[list[ContentBlock]]):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def _next(self, messages, system_prompt, tools) -> AnthropicResponse:
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt, "tools": tools})
        if not self.responses:
            raise RuntimeError("No scripted response left")
        content = self.responses.pop(0)
        stop_reason = "tool_use" if any(isinstance(b, ToolUseBlock) for b in content) else "end_turn"
        return AnthropicResponse(content=content, stop_reason=stop_reason, usage=TokenUsage(), model="test-model")

    async def stream_message(self, messages, system_prompt, tools=None, on_text=None, on_thinking=None, **kwargs):
        response = self._next(messages, system_prompt, tools)
        for block in response.content:
            if isinstance(block, ThinkingBlock) and on_thinking:
                await on_thinking(block.thinking)
            elif isinstance(block, TextBlock) and on_text:
                # Split like a real stream so merging is exercised
                for index, word in enumerate(block.text.split(" ")):
                    await on_text(word if index == 0 else f" {word}")
        return response

    async def create_message(self, messages, system_prompt, tools=None, **kwargs):
        return self._next(messages, system_prompt, tools)

    async def close(self):
        self.closed = True


class FakeTaigaBackend:
    """Route table served through httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method, path)] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v1")
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"_error_message": "No encontrado.", "_error_type": "NotFound"})
        status, body = route
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def client(self, token: str | None = "tok", base_url: str = TAIGA_URL) -> TaigaClient:
        return TaigaClient(base_url=base_url, auth_token=token, transport=httpx.MockTransport(self.handler))

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.removeprefix("/api/v1") == path]

    def sent_json(self, method: str, path: str) -> dict[str, Any]:
        return json.loads(self.sent(method, path)[-1].content)


def make_story(story_id: int = 10, **overrides: Any) -> dict[str, Any]:
    story = {
        "id": story_id,
        "ref": story_id + 100,
        "subject": f"Story {story_id}",
        "description": "Long description that listings must not include",
        "status": 1,
        "status_extra_info": {"name": "New", "color": "#999", "is_closed": False},
        "is_closed": False,
        "is_blocked": False,
        "total_points": 3.0,
        "assigned_to": None,
        "assigned_to_extra_info": None,
        "owner_extra_info": {"id": 5, "username": "ana", "full_name_display": "Ana García"},
        "milestone": None,
        "milestone_name": None,
        "tags": [],
        "created_date": "2024-01-01T10:00:00Z",
        "modified_date": "2024-01-02T10:00:00Z",
        "version": 4,
    }
    story.update(overrides)
    return story


def make_task(task_id: int = 20, **overrides: Any) -> dict[str, Any]:
    task = {
        "id": task_id,
        "ref": task_id + 100,
        "subject": f"Task {task_id}",
        "description": "Task description",
        "status": 2,
        "status_extra_info": {"name": "In progress", "is_closed": False},
        "is_closed": False,
        "user_story": 10,
        "user_story_extra_info": {"id": 10, "ref": 110, "subject": "Story 10"},
        "assigned_to": 5,
        "assigned_to_extra_info": {"id": 5, "username": "ana", "full_name_display": "Ana García"},
        "tags": [],
        "created_date": "2024-01-03T10:00:00Z",
        "modified_date": "2024-01-03T11:00:00Z",
        "version": 2,
    }
    task.update(overrides)
    return task


def make_project(project_id: int = 1, **overrides: Any) -> dict[str, Any]:
    project = {
        "id": project_id,
        "name": f"Project {project_id}",
        "slug": f"project-{project_id}",
        "description": "x" * 300,
        "created_date": "2023-12-01T10:00:00Z",
        "is_private": True,
        "total_milestones": 4,
        "members": [1, 2, 3],
        "total_story_points": 120.0,
    }
    project.update(overrides)
    return project


@pytest.fixture
def taiga_backend() -> FakeTaigaBackend:
    return FakeTaigaBackend()


@pytest.fixture
def scripted_client():
    """Factory for scripted model clients."""
    return ScriptedAnthropicClient
