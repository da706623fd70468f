"""FastAPI application entry point for Workbench"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlmodel import Session

from workbench.api.auth import auth_middleware, current_username
from workbench.api.auth import router as auth_router
from workbench.api.chat import close_llm_service
from workbench.api.chat import router as chat_router
from workbench.core.config import settings
from workbench.core.logging import configure_logging, get_logger
from workbench.db import (
    ConversationRepository,
    MessageRepository,
    get_session,
    init_db,
)

logger = get_logger(__name__)


class MessageResponse(BaseModel):
    """Response model for a message."""

    id: str
    role: str
    content: str
    usage: dict[str, Any] | None
    created_at: datetime


class ConversationListItem(BaseModel):
    """Response model for conversation list item (without messages)."""

    id: str
    title: str
    model: str
    system: str
    created_at: datetime
    updated_at: datetime


class ConversationResponse(ConversationListItem):
    """Response model for a conversation."""

    messages: list[MessageResponse]


class ConversationListMeta(BaseModel):
    """Pagination metadata."""

    total: int
    limit: int
    offset: int


class ConversationListResponse(BaseModel):
    """Response model for conversation list."""

    data: list[ConversationListItem]
    meta: ConversationListMeta


class ConversationCreate(BaseModel):
    """Request body for creating a conversation."""

    id: str | None = None
    title: str | None = None
    model: str | None = None
    system: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConversationUpdate(BaseModel):
    """Request body for patching conversation metadata."""

    title: str | None = None
    model: str | None = None
    system: str | None = None


class MessageCreate(BaseModel):
    """Request body for appending a message."""

    role: Literal["user", "assistant"]
    content: str
    usage: dict[str, Any] | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager for startup/shutdown."""
    # Startup
    configure_logging()
    # Initialize database
    init_db()
    logger.info("database_initialized")
    yield
    # Shutdown
    await close_llm_service()


app = FastAPI(
    title="Workbench API",
    description="Password-gated chat relay for the Anthropic Messages API",
    version="0.1.0",
    lifespan=lifespan,
)

# Auth runs inside CORS so preflight requests never need a token
app.middleware("http")(auth_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Auth-Token"],
)

app.include_router(auth_router)
app.include_router(chat_router)


def _list_item(conv) -> ConversationListItem:
    return ConversationListItem(
        id=conv.id,
        title=conv.title,
        model=conv.model,
        system=conv.system,
        created_at=conv.created_at,
        updated_at=conv.updated_at,
    )


def _message_response(msg) -> MessageResponse:
    return MessageResponse(
        id=msg.id,
        role=msg.role,
        content=msg.content,
        usage=msg.usage,
        created_at=msg.created_at,
    )


@app.get("/api/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict with status "ok" if the service is healthy.
    """
    return {"status": "ok"}


@app.get("/api/conversations")
async def list_conversations(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> ConversationListResponse:
    """Get the user's conversations, most recently updated first.

    Args:
        limit: Maximum number of conversations (1-200, default: 50)
        offset: Number of conversations to skip (default: 0)

    Returns:
        List of conversations with pagination metadata.
    """
    conv_repo = ConversationRepository(session)
    conversations = conv_repo.list_for_user(username, limit=limit, offset=offset)
    total = conv_repo.count_for_user(username)

    return ConversationListResponse(
        data=[_list_item(conv) for conv in conversations],
        meta=ConversationListMeta(total=total, limit=limit, offset=offset),
    )


@app.get("/api/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> ConversationResponse:
    """Get a specific conversation with all of its messages.

    Raises:
        HTTPException: If conversation not found (404).
    """
    conv = ConversationRepository(session).get(conversation_id, username)
    if conv is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    messages = MessageRepository(session).list_by_conversation(conversation_id)

    return ConversationResponse(
        **_list_item(conv).model_dump(),
        messages=[_message_response(msg) for msg in messages],
    )


@app.post("/api/conversations", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> ConversationListItem:
    """Create a conversation.

    Raises:
        HTTPException: If the ID is already taken (409).
    """
    conv_repo = ConversationRepository(session)
    if body.id is not None and conv_repo.get(body.id) is not None:
        raise HTTPException(status_code=409, detail="Conversation already exists")

    conv = conv_repo.create(
        username=username,
        model=body.model or settings.default_model,
        title=body.title,
        system=body.system,
        conversation_id=body.id,
        created_at=body.created_at,
        updated_at=body.updated_at,
    )
    logger.info("conversation_created", conversation_id=conv.id, username=username)
    return _list_item(conv)


@app.patch("/api/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: str,
    body: ConversationUpdate,
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> ConversationListItem:
    """Patch title, model or system prompt; omitted fields are unchanged.

    Raises:
        HTTPException: If conversation not found (404).
    """
    conv = ConversationRepository(session).update(
        conversation_id,
        username,
        title=body.title,
        model=body.model,
        system=body.system,
    )
    if conv is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.debug("conversation_updated", conversation_id=conversation_id)
    return _list_item(conv)


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> dict[str, bool]:
    """Delete a conversation and its messages.

    Raises:
        HTTPException: If conversation not found (404).
    """
    if not ConversationRepository(session).delete(conversation_id, username):
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.info("conversation_deleted", conversation_id=conversation_id)
    return {"success": True}


@app.post("/api/conversations/{conversation_id}/messages", status_code=201)
async def append_message(
    conversation_id: str,
    body: MessageCreate,
    username: str = Depends(current_username),
    session: Session = Depends(get_session),
) -> MessageResponse:
    """Append a finished message to a conversation.

    Raises:
        HTTPException: If conversation not found (404).
    """
    if ConversationRepository(session).get(conversation_id, username) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    msg = MessageRepository(session).create(
        conversation_id=conversation_id,
        username=username,
        role=body.role,
        content=body.content,
        usage=body.usage,
    )
    logger.debug(
        "message_saved",
        message_id=msg.id,
        conversation_id=conversation_id,
        role=body.role,
    )
    return _message_response(msg)


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
