"""Quotes API router."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.modules.auth.actor import Actor
from src.modules.auth.dependencies import get_current_actor
from src.modules.interventions.router import action_response
from src.modules.interventions.schemas import ActionResponse
from src.modules.quotes.quote_service import QuoteService
from src.modules.quotes.schemas import QuoteCreate, QuoteRejectRequest, QuoteResponse

router = APIRouter(tags=["quotes"])


@router.post(
    "/interventions/{intervention_id}/quotes", response_model=QuoteResponse, status_code=201
)
async def submit_quote(
    intervention_id: uuid.UUID,
    body: QuoteCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Submit a quote as an assigned provider."""
    svc = QuoteService(db)
    quote = await svc.submit_quote(
        intervention_id,
        actor,
        amount=body.amount,
        description=body.description,
        currency=body.currency,
    )
    return QuoteResponse.model_validate(quote)


@router.get("/interventions/{intervention_id}/quotes", response_model=list[QuoteResponse])
async def list_quotes(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = QuoteService(db)
    quotes = await svc.list_quotes(intervention_id, actor)
    return [QuoteResponse.model_validate(q) for q in quotes]


@router.post("/quotes/{quote_id}/approve", response_model=ActionResponse)
async def approve_quote(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Accept a quote; competing pending quotes are rejected."""
    svc = QuoteService(db)
    result = await svc.approve_quote(quote_id, actor)
    return action_response(result)


@router.post("/quotes/{quote_id}/reject", response_model=QuoteResponse)
async def reject_quote(
    quote_id: uuid.UUID,
    body: QuoteRejectRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = QuoteService(db)
    quote = await svc.reject_quote(quote_id, actor, body.reason)
    return QuoteResponse.model_validate(quote)
