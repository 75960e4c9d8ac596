"""Taiga backend entities (only the fields the assistant reads)."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

HistoryKind = Literal["userstory", "task", "issue"]


class TaigaModel(BaseModel):
    """Base for backend payloads; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class AuthResponse(TaigaModel):
    """Response of ``POST /auth``."""

    id: int
    username: str
    full_name: str | None = None
    email: str | None = None
    photo: str | None = None
    auth_token: str


class UserInfo(TaigaModel):
    """Compact user reference (``*_extra_info`` fields)."""

    id: int | None = None
    username: str | None = None
    full_name: str | None = None
    full_name_display: str | None = None

    @property
    def display_name(self) -> str | None:
        return self.full_name or self.full_name_display


class Member(TaigaModel):
    id: int
    username: str | None = None
    full_name: str | None = None
    role_name: str | None = None


class Status(TaigaModel):
    id: int
    name: str
    color: str | None = None
    is_closed: bool = False


class StatusInfo(TaigaModel):
    name: str | None = None
    color: str | None = None
    is_closed: bool | None = None


class Project(TaigaModel):
    """Project as returned by the listing endpoint."""

    id: int
    name: str
    slug: str | None = None
    description: str | None = None
    created_date: str | None = None
    is_private: bool = False
    total_milestones: int | None = None
    # ids in listings, objects in detail responses
    members: list[Any] = []


class ProjectDetail(Project):
    owner: UserInfo | None = None
    members: list[Member] = []
    us_statuses: list[Status] = []
    task_statuses: list[Status] = []


class UserStoryRef(TaigaModel):
    id: int
    ref: int | None = None
    subject: str | None = None


class UserStory(TaigaModel):
    id: int
    ref: int | None = None
    subject: str
    description: str | None = None
    status: int | None = None
    status_extra_info: StatusInfo | None = None
    is_closed: bool = False
    is_blocked: bool = False
    blocked_note: str | None = None
    total_points: float | None = None
    assigned_to: int | None = None
    assigned_to_extra_info: UserInfo | None = None
    owner_extra_info: UserInfo | None = None
    milestone: int | None = None
    milestone_name: str | None = None
    tags: list[Any] = []
    created_date: str | None = None
    modified_date: str | None = None
    version: int = 1


class Task(TaigaModel):
    id: int
    ref: int | None = None
    subject: str
    description: str | None = None
    status: int | None = None
    status_extra_info: StatusInfo | None = None
    is_closed: bool = False
    is_blocked: bool = False
    blocked_note: str | None = None
    user_story: int | None = None
    user_story_extra_info: UserStoryRef | None = None
    assigned_to: int | None = None
    assigned_to_extra_info: UserInfo | None = None
    owner_extra_info: UserInfo | None = None
    milestone: int | None = None
    tags: list[Any] = []
    created_date: str | None = None
    modified_date: str | None = None
    version: int = 1


class Milestone(TaigaModel):
    id: int
    name: str
    slug: str | None = None
    estimated_start: str | None = None
    estimated_finish: str | None = None
    closed: bool = False
    total_points: float | None = None
    closed_points: float | None = None
    user_stories: list[UserStory] = []


class HistoryUser(TaigaModel):
    pk: int | None = None
    username: str | None = None
    name: str | None = None


class HistoryEntry(TaigaModel):
    """History entry; comments are entries with a non-empty ``comment``."""

    id: str
    user: HistoryUser
    created_at: str | None = None
    type: int | None = None
    comment: str | None = None
    edit_comment_date: str | None = None


class SearchItem(TaigaModel):
    id: int
    ref: int | None = None
    subject: str | None = None


class SearchResults(TaigaModel):
    count: int = 0
    userstories: list[SearchItem] = []
    tasks: list[SearchItem] = []
    issues: list[SearchItem] = []
