"""Main FastAPI application."""

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.api.endpoints import ChatRequestError, router
from app.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="Taiga AI Assistant",
    description=(
        "A conversational assistant for Taiga projects: natural-language access "
        "to projects, sprints, user stories, tasks and comments, streamed as "
        "server-sent events."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Chat",
            "description": "Stream the assistant's reasoning, text and tool calls for one turn.",
        },
        {
            "name": "Auth",
            "description": "Log in to a Taiga backend and obtain a token.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatRequestError)
async def chat_request_error_handler(request: Request, exc: ChatRequestError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Chat bodies that fail to parse get the same error as a missing conversation."""
    if request.url.path == "/api/chat":
        return JSONResponse(status_code=400, content={"error": "Messages not provided"})
    return await request_validation_exception_handler(request, exc)


# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
