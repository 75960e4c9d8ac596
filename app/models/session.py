"""Chat sessions kept by the transcript store."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from app.models.messages import Message, generate_id

DEFAULT_SESSION_TITLE = "New conversation"
TITLE_MAX_LENGTH = 40


def title_from(messages: list[Message]) -> str:
    """Title derived from the first user message."""
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return DEFAULT_SESSION_TITLE
    content = first_user.content
    return f"{content[:TITLE_MAX_LENGTH]}..." if len(content) > TITLE_MAX_LENGTH else content


class ChatSession(BaseModel):
    """A conversation and its finalized messages."""

    id: str = Field(default_factory=generate_id)
    title: str = DEFAULT_SESSION_TITLE
    messages: list[Message] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def update_activity(self) -> None:
        """Update the last activity timestamp."""
        self.updated_at = datetime.now(UTC)


class TranscriptState(BaseModel):
    """Everything the store persists."""

    sessions: list[ChatSession] = []
    active_session_id: str | None = None
