"""Async HTTP client for the Taiga REST API."""

import os
from typing import Any

import httpx

from app.config import DEFAULT_TAIGA_API_URL
from app.models.taiga import (
    AuthResponse,
    HistoryEntry,
    HistoryKind,
    Milestone,
    Project,
    ProjectDetail,
    SearchResults,
    Task,
    UserStory,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)

# history kind -> REST collection that accepts comment PATCHes
COMMENT_ENDPOINTS: dict[str, str] = {
    "userstory": "userstories",
    "task": "tasks",
    "issue": "issues",
}


class TaigaApiError(Exception):
    """Non-successful response from the Taiga API."""

    def __init__(self, message: str, status_code: int, error_type: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


def _query_params(filters: dict[str, Any]) -> dict[str, str]:
    """Drop unset filters and render values the way Taiga expects."""
    params: dict[str, str] = {}
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        elif isinstance(value, list | tuple):
            params[key] = ",".join(str(item) for item in value)
        else:
            params[key] = str(value)
    return params


class TaigaClient:
    """Thin client over the Taiga resources used by the assistant.

    One instance is created per chat request and closed with it; the bearer
    token is bound at construction.
    """

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or os.getenv("TAIGA_API_URL", DEFAULT_TAIGA_API_URL)).rstrip("/")
        self.auth_token = auth_token
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "TaigaClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        url = f"{self.base_url}{endpoint}"
        logger.debug(f"Taiga {method} {endpoint} params={params}")

        try:
            response = await self._http.request(
                method,
                url,
                params=_query_params(params) if params else None,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise TaigaApiError(f"Could not reach Taiga: {e}", 502) from e

        if response.is_error:
            message = f"HTTP {response.status_code}: {response.reason_phrase}"
            error_type = None
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("_error_message"):
                message = data["_error_message"]
                error_type = data.get("_error_type")
            raise TaigaApiError(message, response.status_code, error_type)

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    # Auth

    async def authenticate(self, username: str, password: str) -> AuthResponse:
        """Exchange credentials for a token and bind it to this client."""
        data = await self._request(
            "POST",
            "/auth",
            json={"username": username, "password": password, "type": "normal"},
        )
        auth = AuthResponse.model_validate(data)
        self.auth_token = auth.auth_token
        return auth

    # Projects

    async def get_projects(self) -> list[Project]:
        data = await self._request("GET", "/projects")
        return [Project.model_validate(item) for item in data]

    async def get_project(self, project_id: int) -> ProjectDetail:
        return ProjectDetail.model_validate(await self._request("GET", f"/projects/{project_id}"))

    async def get_project_stats(self, project_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/projects/{project_id}/stats")

    # Milestones

    async def get_milestones(self, project_id: int) -> list[Milestone]:
        data = await self._request("GET", "/milestones", params={"project": project_id})
        return [Milestone.model_validate(item) for item in data]

    async def get_milestone(self, milestone_id: int) -> Milestone:
        return Milestone.model_validate(await self._request("GET", f"/milestones/{milestone_id}"))

    async def get_milestone_stats(self, milestone_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/milestones/{milestone_id}/stats")

    # User stories

    async def get_user_stories(self, **filters: Any) -> list[UserStory]:
        data = await self._request("GET", "/userstories", params=filters)
        return [UserStory.model_validate(item) for item in data]

    async def get_user_story(self, user_story_id: int) -> UserStory:
        return UserStory.model_validate(await self._request("GET", f"/userstories/{user_story_id}"))

    async def create_user_story(self, payload: dict[str, Any]) -> UserStory:
        return UserStory.model_validate(await self._request("POST", "/userstories", json=payload))

    async def update_user_story(self, user_story_id: int, payload: dict[str, Any]) -> UserStory:
        """PATCH a story; ``payload`` must carry the current ``version``."""
        data = await self._request("PATCH", f"/userstories/{user_story_id}", json=payload)
        return UserStory.model_validate(data)

    async def search_user_stories(self, project_id: int, query: str) -> list[UserStory]:
        return await self.get_user_stories(project=project_id, q=query)

    # Tasks

    async def get_tasks(self, **filters: Any) -> list[Task]:
        data = await self._request("GET", "/tasks", params=filters)
        return [Task.model_validate(item) for item in data]

    async def get_task(self, task_id: int) -> Task:
        return Task.model_validate(await self._request("GET", f"/tasks/{task_id}"))

    async def create_task(self, payload: dict[str, Any]) -> Task:
        return Task.model_validate(await self._request("POST", "/tasks", json=payload))

    async def update_task(self, task_id: int, payload: dict[str, Any]) -> Task:
        """PATCH a task; ``payload`` must carry the current ``version``."""
        return Task.model_validate(await self._request("PATCH", f"/tasks/{task_id}", json=payload))

    async def search_tasks(self, project_id: int, query: str) -> list[Task]:
        return await self.get_tasks(project=project_id, q=query)

    # History and comments

    async def get_history(self, kind: HistoryKind, object_id: int) -> list[HistoryEntry]:
        data = await self._request("GET", f"/history/{kind}/{object_id}")
        return [HistoryEntry.model_validate(item) for item in data]

    async def get_comments(self, kind: HistoryKind, object_id: int) -> list[HistoryEntry]:
        history = await self.get_history(kind, object_id)
        return [entry for entry in history if entry.comment and entry.comment.strip()]

    async def create_comment(self, kind: HistoryKind, object_id: int, comment: str, version: int) -> None:
        """Comments are created by PATCHing the item with a ``comment`` field."""
        endpoint = COMMENT_ENDPOINTS[kind]
        await self._request("PATCH", f"/{endpoint}/{object_id}", json={"comment": comment, "version": version})

    # Search

    async def search(self, project_id: int, query: str) -> SearchResults:
        data = await self._request("GET", "/search", params={"project": project_id, "text": query})
        return SearchResults.model_validate(data)
