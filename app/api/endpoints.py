"""API endpoints for the Taiga assistant service."""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app import __version__
from app.clients.anthropic import AnthropicConfig
from app.clients.taiga import TaigaApiError, TaigaClient
from app.config import ChatSettings
from app.models.conversation import AuthRequest, AuthResult, AuthUser, ChatRequest, ErrorResponse, HealthResponse
from app.runtime import AgentRuntime
from app.services.chat_stream import ChatStreamDriver
from app.services.sse import SSE_HEADERS, SSE_MEDIA_TYPE
from app.tools import build_taiga_tools
from app.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

RuntimeFactory = Callable[[], AgentRuntime]
TaigaClientFactory = Callable[[str, str | None], TaigaClient]

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


class ChatRequestError(Exception):
    """Request rejected with a fixed message, rendered as ``{"error": message}``."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def get_chat_settings() -> ChatSettings:
    return ChatSettings.from_env()


def get_runtime_factory() -> RuntimeFactory:
    """Each chat request gets its own runtime."""
    return lambda: AgentRuntime(config=AnthropicConfig.from_env())


def get_taiga_client_factory() -> TaigaClientFactory:
    return lambda base_url, token: TaigaClient(base_url=base_url, auth_token=token)


@router.post("/api/auth", response_model=AuthResult, responses=ERROR_RESPONSES, tags=["Auth"])
async def login(
    request: AuthRequest,
    client_factory: TaigaClientFactory = Depends(get_taiga_client_factory),
) -> AuthResult:
    """Exchange Taiga credentials for a token."""
    if not request.username or not request.password:
        raise ChatRequestError(400, "Username and password are required")
    if not request.backend_url:
        raise ChatRequestError(400, "Backend URL is required")

    async with client_factory(request.backend_url, None) as client:
        try:
            auth = await client.authenticate(request.username, request.password)
        except TaigaApiError as e:
            logger.warning(f"Login failed for {request.username} ({e.status_code}): {e.message}")
            raise ChatRequestError(e.status_code, e.message) from e
        except Exception as e:
            logger.error(f"Login error for {request.username}: {e}", exc_info=True)
            raise ChatRequestError(500, "Internal server error") from e

    logger.info(f"User {auth.username} logged in to {request.backend_url}")
    return AuthResult(
        user=AuthUser(
            id=auth.id,
            username=auth.username,
            full_name=auth.full_name,
            email=auth.email,
            photo=auth.photo,
        ),
        token=auth.auth_token,
    )


@router.post(
    "/api/chat",
    response_class=StreamingResponse,
    responses={200: {"content": {SSE_MEDIA_TYPE: {}}}, **ERROR_RESPONSES},
    tags=["Chat"],
)
async def chat(
    request: ChatRequest,
    settings: ChatSettings = Depends(get_chat_settings),
    runtime_factory: RuntimeFactory = Depends(get_runtime_factory),
    client_factory: TaigaClientFactory = Depends(get_taiga_client_factory),
) -> StreamingResponse:
    """Run one assistant turn and stream its events.

    Prior messages are replayed into a fresh session for context; the last
    message is answered live as server-sent events.
    """
    if not request.credential:
        logger.warning("Chat request without backend token")
        raise ChatRequestError(401, "Backend token not provided")
    if not request.backend_url:
        logger.warning("Chat request without backend URL")
        raise ChatRequestError(400, "Backend URL not provided")
    if not request.messages:
        logger.warning("Chat request without messages")
        raise ChatRequestError(400, "Messages not provided")

    session_id = request.session_id or f"taiga-{int(time.time() * 1000)}"
    taiga = client_factory(request.backend_url, request.credential)
    driver = ChatStreamDriver(
        runtime=runtime_factory(),
        tools=build_taiga_tools(taiga),
        settings=settings,
        session_id=session_id,
        cleanup=taiga.aclose,
    )

    *history, latest = request.messages
    try:
        await driver.prepare(history)
        driver.run(latest.content)
    except Exception as e:
        logger.error(f"Chat session {session_id} failed to start: {e}", exc_info=True)
        await driver.aclose()
        raise ChatRequestError(500, str(e) or "Internal server error") from e

    logger.info(f"Streaming chat session {session_id} ({len(history)} prior messages)")
    return StreamingResponse(driver.stream(), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
