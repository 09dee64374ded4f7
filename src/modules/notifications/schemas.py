"""Pydantic v2 schemas for notification endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import NotificationPriority, NotificationType


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    team_id: uuid.UUID | None = None
    created_by: uuid.UUID | None = None
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    is_personal: bool
    metadata_extra: dict = Field(default_factory=dict)
    related_entity_type: str | None = None
    related_entity_id: uuid.UUID | None = None
    read: bool
    read_at: datetime | None = None
    archived: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    limit: int
    offset: int


class UnreadCountsResponse(BaseModel):
    personal: int
    team: int
    total: int


class MarkAllReadResponse(BaseModel):
    updated: int


class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(..., min_length=1)
    p256dh: str = Field(..., min_length=1, max_length=255)
    auth: str = Field(..., min_length=1, max_length=255)


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(..., min_length=1)


class PushSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    endpoint: str
    created_at: datetime
