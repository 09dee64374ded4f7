"""Conversations API router."""

import uuid

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.modules.auth.actor import Actor
from src.modules.auth.dependencies import get_current_actor
from src.modules.conversations.schemas import (
    MessageCreate,
    MessageResponse,
    ParticipantCreate,
    ParticipantResponse,
    ThreadResponse,
)
from src.modules.conversations.service import ConversationService

router = APIRouter(tags=["conversations"])
limiter = Limiter(key_func=get_remote_address)


@router.get("/interventions/{intervention_id}/threads", response_model=list[ThreadResponse])
async def list_threads(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = ConversationService(db)
    threads = await svc.list_threads(intervention_id, actor)
    return [ThreadResponse.model_validate(t) for t in threads]


@router.get("/threads/{thread_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    thread_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = ConversationService(db)
    messages = await svc.list_messages(thread_id, actor, limit=limit, offset=offset)
    return [MessageResponse.model_validate(m) for m in messages]


@router.post("/threads/{thread_id}/messages", response_model=MessageResponse, status_code=201)
@limiter.limit("30/minute")
async def post_message(
    request: Request,
    thread_id: uuid.UUID,
    body: MessageCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Post a message; participants and team managers are notified."""
    svc = ConversationService(db)
    message = await svc.post_message(thread_id, actor, body.content)
    return MessageResponse.model_validate(message)


@router.post(
    "/threads/{thread_id}/participants", response_model=ParticipantResponse, status_code=201
)
async def add_participant(
    thread_id: uuid.UUID,
    body: ParticipantCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = ConversationService(db)
    participant = await svc.add_participant(thread_id, body.user_id, actor)
    return ParticipantResponse.model_validate(participant)


@router.post("/threads/{thread_id}/read", response_model=ParticipantResponse)
async def mark_thread_read(
    thread_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = ConversationService(db)
    participant = await svc.mark_thread_read(thread_id, actor)
    return ParticipantResponse.model_validate(participant)
