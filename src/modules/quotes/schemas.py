"""Pydantic v2 schemas for quote endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import QuoteStatus


class QuoteCreate(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field("EUR", min_length=3, max_length=3)
    description: str | None = Field(None, max_length=5000)


class QuoteRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class QuoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    provider_id: uuid.UUID
    status: QuoteStatus
    amount: Decimal
    currency: str
    description: str | None = None
    submitted_at: datetime | None = None
    validated_at: datetime | None = None
    validated_by: uuid.UUID | None = None
    rejection_reason: str | None = None
    created_at: datetime
