"""Pydantic v2 schemas for intervention API endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import (
    AssignmentRole,
    EffectStatus,
    InterventionAction,
    InterventionStatus,
    InterventionUrgency,
    SlotResponseType,
    TimeSlotStatus,
)

# ---------------------------------------------------------------------------
# Intervention schemas
# ---------------------------------------------------------------------------


class InterventionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    intervention_type: str = Field("autre", max_length=50)
    urgency: InterventionUrgency = InterventionUrgency.NORMAL
    lot_id: uuid.UUID | None = None
    tenant_id: uuid.UUID | None = None


class InterventionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference: str
    title: str
    description: str
    intervention_type: str
    urgency: InterventionUrgency
    status: InterventionStatus
    team_id: uuid.UUID
    lot_id: uuid.UUID | None = None
    tenant_id: uuid.UUID | None = None
    created_by: uuid.UUID | None = None
    final_cost: Decimal | None = None
    selected_quote_id: uuid.UUID | None = None
    quote_deadline: datetime | None = None
    quote_notes: str | None = None
    is_contested: bool
    manager_comment: str | None = None
    provider_comment: str | None = None
    tenant_comment: str | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    tenant_satisfaction: int | None = None
    scheduled_date: datetime | None = None
    started_at: datetime | None = None
    completed_date: datetime | None = None
    tenant_validated_date: datetime | None = None
    finalized_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class InterventionListResponse(BaseModel):
    items: list[InterventionResponse]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Workflow schemas
# ---------------------------------------------------------------------------


class ActionRequest(BaseModel):
    """Payload of a workflow action; each action reads the fields it needs."""

    comment: str | None = Field(None, max_length=5000)
    reason: str | None = Field(None, max_length=1000)
    comments: str | None = Field(None, max_length=5000)
    report: str | None = Field(None, max_length=10000)
    scheduled_date: datetime | None = None
    quote_id: uuid.UUID | None = None
    final_cost: Decimal | None = None
    satisfaction: int | None = None
    # request_quotes
    provider_ids: list[uuid.UUID] | None = None
    deadline: datetime | None = None
    notes: str | None = Field(None, max_length=5000)
    messages: dict[uuid.UUID, str] | None = None
    # schedule from a proposed slot
    slot_id: uuid.UUID | None = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class TransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    from_status: InterventionStatus
    to_status: InterventionStatus
    action: InterventionAction
    triggered_by: uuid.UUID | None = None
    trigger_source: str
    reason: str | None = None
    metadata_extra: dict = Field(default_factory=dict)
    created_at: datetime


class EffectOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    status: EffectStatus
    detail: str | None = None
    error: str | None = None


class ActionResponse(BaseModel):
    intervention: InterventionResponse
    action: InterventionAction
    from_status: InterventionStatus
    to_status: InterventionStatus
    accepted_quote_id: uuid.UUID | None = None
    rejected_quote_ids: list[uuid.UUID] = Field(default_factory=list)
    effects: list[EffectOutcomeResponse] = Field(default_factory=list)


class AllowedActionsResponse(BaseModel):
    status: InterventionStatus
    actions: list[InterventionAction]


# ---------------------------------------------------------------------------
# Assignment schemas
# ---------------------------------------------------------------------------


class AssignmentCreate(BaseModel):
    user_id: uuid.UUID
    role: AssignmentRole
    is_primary: bool = False


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    user_id: uuid.UUID
    role: AssignmentRole
    is_primary: bool
    assigned_by: uuid.UUID | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Planning schemas
# ---------------------------------------------------------------------------


class SlotProposal(BaseModel):
    start_at: datetime
    end_at: datetime
    notes: str | None = Field(None, max_length=1000)


class SlotProposalRequest(BaseModel):
    slots: list[SlotProposal] = Field(..., min_length=1)


class SlotAnswerRequest(BaseModel):
    response: SlotResponseType
    comment: str | None = Field(None, max_length=1000)
    counter_start: datetime | None = None
    counter_end: datetime | None = None


class SlotSelectRequest(BaseModel):
    comment: str | None = Field(None, max_length=5000)


class SlotAnswerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slot_id: uuid.UUID
    user_id: uuid.UUID
    response: SlotResponseType
    comment: str | None = None
    counter_slot_id: uuid.UUID | None = None
    created_at: datetime


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    proposed_by: uuid.UUID | None = None
    start_at: datetime
    end_at: datetime
    status: TimeSlotStatus
    notes: str | None = None
    selected_at: datetime | None = None
    selected_by: uuid.UUID | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Document schemas
# ---------------------------------------------------------------------------


class DocumentCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    storage_path: str = Field(..., min_length=1, max_length=1024)
    document_type: str = Field("other", max_length=50)
    size_bytes: int | None = Field(None, ge=0)


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    intervention_id: uuid.UUID
    uploaded_by: uuid.UUID | None = None
    filename: str
    storage_path: str
    document_type: str
    size_bytes: int | None = None
    created_at: datetime
