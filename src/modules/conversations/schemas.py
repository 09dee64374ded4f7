"""Pydantic v2 schemas for conversation endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import ThreadType


class ThreadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    team_id: uuid.UUID
    thread_type: ThreadType
    title: str | None = None
    last_message_at: datetime | None = None
    message_count: int
    created_at: datetime


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    thread_id: uuid.UUID
    user_id: uuid.UUID | None = None
    content: str
    created_at: datetime


class ParticipantCreate(BaseModel):
    user_id: uuid.UUID


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    thread_id: uuid.UUID
    user_id: uuid.UUID
    joined_at: datetime
    last_read_at: datetime | None = None
