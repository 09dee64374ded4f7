"""Interventions API router: CRUD, workflow actions, assignments and documents."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.models.enums import AssignmentRole, InterventionAction, InterventionStatus
from src.modules.auth.actor import Actor
from src.modules.auth.dependencies import get_current_actor
from src.modules.interventions.document_service import InterventionDocumentService
from src.modules.interventions.planning_service import InterventionPlanningService
from src.modules.interventions.schemas import (
    ActionRequest,
    ActionResponse,
    AllowedActionsResponse,
    AssignmentCreate,
    AssignmentResponse,
    DocumentCreate,
    DocumentResponse,
    EffectOutcomeResponse,
    InterventionCreate,
    InterventionListResponse,
    InterventionResponse,
    SlotAnswerRequest,
    SlotAnswerResponse,
    SlotProposalRequest,
    SlotResponse,
    SlotSelectRequest,
    TransitionResponse,
)
from src.modules.interventions.workflow_service import InterventionWorkflowService, TransitionResult
from src.schemas.responses import error_content
from src.schemas.results import ActionResult

router = APIRouter(prefix="/interventions", tags=["interventions"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def action_response(result: TransitionResult) -> ActionResponse:
    resolution = result.quote_resolution
    return ActionResponse(
        intervention=InterventionResponse.model_validate(result.intervention),
        action=result.action,
        from_status=result.from_status,
        to_status=result.to_status,
        accepted_quote_id=resolution.accepted.id if resolution else None,
        rejected_quote_ids=[q.id for q in resolution.rejected] if resolution else [],
        effects=[EffectOutcomeResponse.model_validate(o) for o in result.effects],
    )


def failure_response(request: Request, result: ActionResult) -> JSONResponse:
    """Structured error envelope for a failed ActionResult."""
    return JSONResponse(
        status_code=result.status_code,
        content=error_content(
            result.error_code,
            result.error,
            getattr(request.state, "request_id", "unknown"),
            result.details,
        ),
    )


# ---------------------------------------------------------------------------
# Intervention CRUD
# ---------------------------------------------------------------------------


@router.post("/", response_model=InterventionResponse, status_code=201)
async def create_intervention(
    body: InterventionCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create an intervention request."""
    svc = InterventionWorkflowService(db)
    intervention = await svc.create_intervention(actor, body.model_dump())
    return InterventionResponse.model_validate(intervention)


@router.get("/", response_model=InterventionListResponse)
async def list_interventions(
    status: InterventionStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """List interventions visible to the caller."""
    svc = InterventionWorkflowService(db)
    items, total = await svc.list_interventions(actor, status=status, limit=limit, offset=offset)
    return InterventionListResponse(
        items=[InterventionResponse.model_validate(i) for i in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{intervention_id}", response_model=InterventionResponse)
async def get_intervention(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionWorkflowService(db)
    return InterventionResponse.model_validate(await svc.get_intervention(intervention_id, actor))


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@router.post("/{intervention_id}/actions/{action}", response_model=ActionResponse)
async def perform_action(
    request: Request,
    intervention_id: uuid.UUID,
    action: InterventionAction,
    body: ActionRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Run a workflow action (approve, schedule, complete...) on an intervention."""
    svc = InterventionWorkflowService(db)
    result = await svc.run(intervention_id, action, actor, body.to_payload() if body else {})
    if not result.success:
        return failure_response(request, result)
    return action_response(result.data)


@router.get("/{intervention_id}/allowed-actions", response_model=AllowedActionsResponse)
async def allowed_actions(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Actions the caller may perform from the current status."""
    svc = InterventionWorkflowService(db)
    intervention = await svc.get_intervention(intervention_id, actor)
    actions = await svc.allowed_actions(intervention_id, actor)
    return AllowedActionsResponse(status=intervention.status, actions=actions)


@router.get("/{intervention_id}/transitions", response_model=list[TransitionResponse])
async def list_transitions(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Status history of an intervention."""
    svc = InterventionWorkflowService(db)
    transitions = await svc.list_transitions(intervention_id, actor)
    return [TransitionResponse.model_validate(t) for t in transitions]


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.get("/{intervention_id}/assignments", response_model=list[AssignmentResponse])
async def list_assignments(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionWorkflowService(db)
    assignments = await svc.list_assignments(intervention_id, actor)
    return [AssignmentResponse.model_validate(a) for a in assignments]


@router.post(
    "/{intervention_id}/assignments", response_model=AssignmentResponse, status_code=201
)
async def assign_user(
    intervention_id: uuid.UUID,
    body: AssignmentCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Assign a manager, provider or tenant to an intervention."""
    svc = InterventionWorkflowService(db)
    assignment = await svc.assign_user(
        intervention_id, body.user_id, body.role, actor, is_primary=body.is_primary
    )
    return AssignmentResponse.model_validate(assignment)


@router.delete("/{intervention_id}/assignments/{user_id}/{role}", status_code=204)
async def unassign_user(
    intervention_id: uuid.UUID,
    user_id: uuid.UUID,
    role: AssignmentRole,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionWorkflowService(db)
    await svc.unassign_user(intervention_id, user_id, role, actor)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@router.get("/{intervention_id}/slots", response_model=list[SlotResponse])
async def list_slots(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionPlanningService(db)
    slots = await svc.list_slots(intervention_id, actor)
    return [SlotResponse.model_validate(s) for s in slots]


@router.post("/{intervention_id}/slots", response_model=list[SlotResponse], status_code=201)
async def propose_slots(
    intervention_id: uuid.UUID,
    body: SlotProposalRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Propose time slots for an intervention being planned."""
    svc = InterventionPlanningService(db)
    slots = await svc.propose_slots(intervention_id, actor, [s.model_dump() for s in body.slots])
    return [SlotResponse.model_validate(s) for s in slots]


@router.get("/slots/{slot_id}/responses", response_model=list[SlotAnswerResponse])
async def list_slot_responses(
    slot_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionPlanningService(db)
    answers = await svc.list_responses(slot_id, actor)
    return [SlotAnswerResponse.model_validate(a) for a in answers]


@router.post("/slots/{slot_id}/responses", response_model=SlotAnswerResponse)
async def respond_to_slot(
    slot_id: uuid.UUID,
    body: SlotAnswerRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Accept, reject or counter a proposed slot."""
    svc = InterventionPlanningService(db)
    answer = await svc.respond_to_slot(
        slot_id,
        actor,
        body.response,
        comment=body.comment,
        counter_start=body.counter_start,
        counter_end=body.counter_end,
    )
    return SlotAnswerResponse.model_validate(answer)


@router.post("/slots/{slot_id}/select", response_model=ActionResponse)
async def select_slot(
    slot_id: uuid.UUID,
    body: SlotSelectRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Schedule the intervention on a proposed slot."""
    svc = InterventionPlanningService(db)
    result = await svc.select_slot(slot_id, actor, comment=body.comment if body else None)
    return action_response(result)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.get("/{intervention_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    intervention_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    svc = InterventionDocumentService(db)
    documents = await svc.list_documents(intervention_id, actor)
    return [DocumentResponse.model_validate(d) for d in documents]


@router.post("/{intervention_id}/documents", response_model=DocumentResponse, status_code=201)
async def register_document(
    intervention_id: uuid.UUID,
    body: DocumentCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Record a document already uploaded to storage."""
    svc = InterventionDocumentService(db)
    document = await svc.register_document(
        intervention_id,
        actor,
        filename=body.filename,
        storage_path=body.storage_path,
        document_type=body.document_type,
        size_bytes=body.size_bytes,
    )
    return DocumentResponse.model_validate(document)
