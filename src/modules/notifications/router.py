"""Notifications API router: inbox and push subscriptions."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.modules.auth.actor import Actor
from src.modules.auth.dependencies import get_current_actor
from src.modules.notifications.schemas import (
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionResponse,
    UnreadCountsResponse,
)
from src.modules.notifications.service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    personal_only: bool = Query(False),
    archived: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = NotificationService(db)
    items, total = await svc.list_for_user(
        actor,
        unread_only=unread_only,
        personal_only=personal_only,
        archived=archived,
        limit=limit,
        offset=offset,
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/counts", response_model=UnreadCountsResponse)
async def unread_counts(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Unread badge counts (personal and team)."""
    return UnreadCountsResponse(**await NotificationService(db).unread_counts(actor))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return MarkAllReadResponse(updated=await NotificationService(db).mark_all_read(actor))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    read: bool = Query(True),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_read(notification_id, actor, read=read)
    return NotificationResponse.model_validate(notification)


@router.post("/{notification_id}/archive", response_model=NotificationResponse)
async def archive(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).archive(notification_id, actor)
    return NotificationResponse.model_validate(notification)


@router.post("/push-subscriptions", response_model=PushSubscriptionResponse, status_code=201)
async def register_push_subscription(
    body: PushSubscriptionCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = NotificationService(db)
    subscription = await svc.register_push_subscription(
        actor, body.endpoint, body.p256dh, body.auth
    )
    return PushSubscriptionResponse.model_validate(subscription)


@router.post("/push-subscriptions/remove", status_code=204)
async def remove_push_subscription(
    body: PushSubscriptionDelete,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    await NotificationService(db).remove_push_subscription(actor, body.endpoint)
