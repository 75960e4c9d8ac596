"""Request and response bodies of the HTTP API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidatorFunctionWrapHandler, field_validator


class ApiModel(BaseModel):
    """Accepts both the camelCase wire names and the Python field names."""

    model_config = ConfigDict(populate_by_name=True)


class ChatTurn(ApiModel):
    """One prior or current message of the conversation."""

    role: Literal["user", "assistant"]
    content: str


class ChatRequest(ApiModel):
    """Body of ``POST /api/chat``.

    Every field is optional at the schema level; the route checks them in a
    fixed order so each missing input gets its own message and status code.
    """

    messages: list[ChatTurn] | None = None
    credential: str | None = None
    backend_url: str | None = Field(None, alias="backendUrl")
    session_id: str | None = Field(None, alias="sessionId")

    @field_validator("messages", mode="wrap")
    @classmethod
    def drop_malformed_messages(cls, value: object, handler: ValidatorFunctionWrapHandler) -> list[ChatTurn] | None:
        """A messages value that is not a list of turns counts as no messages."""
        try:
            return handler(value)
        except ValidationError:
            return None


class AuthRequest(ApiModel):
    """Body of ``POST /api/auth``."""

    username: str | None = None
    password: str | None = None
    backend_url: str | None = Field(None, alias="backendUrl")


class AuthUser(BaseModel):
    id: int
    username: str
    full_name: str | None = None
    email: str | None = None
    photo: str | None = None


class AuthResult(BaseModel):
    """Response of a successful login."""

    success: bool = True
    user: AuthUser
    token: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
