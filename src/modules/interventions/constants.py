"""Intervention state machine, role whitelist, notification audiences and labels."""

from __future__ import annotations

from src.models.enums import AssignmentRole, InterventionAction, InterventionStatus, UserRole

# Valid transitions: from_status -> {action -> to_status}
VALID_TRANSITIONS: dict[InterventionStatus, dict[InterventionAction, InterventionStatus]] = {
    InterventionStatus.DEMANDE: {
        InterventionAction.APPROVE: InterventionStatus.APPROUVEE,
        InterventionAction.REJECT: InterventionStatus.REJETEE,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.APPROUVEE: {
        InterventionAction.REQUEST_QUOTES: InterventionStatus.DEMANDE_DE_DEVIS,
        InterventionAction.START_PLANNING: InterventionStatus.PLANIFICATION,
        InterventionAction.SCHEDULE: InterventionStatus.PLANIFIEE,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.DEMANDE_DE_DEVIS: {
        InterventionAction.ACCEPT_QUOTE: InterventionStatus.PLANIFIEE,
        InterventionAction.START_PLANNING: InterventionStatus.PLANIFICATION,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.PLANIFICATION: {
        InterventionAction.SCHEDULE: InterventionStatus.PLANIFIEE,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.PLANIFIEE: {
        InterventionAction.START: InterventionStatus.EN_COURS,
        InterventionAction.REPLAN: InterventionStatus.PLANIFICATION,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.EN_COURS: {
        InterventionAction.COMPLETE: InterventionStatus.CLOTUREE_PAR_PRESTATAIRE,
        InterventionAction.CANCEL: InterventionStatus.ANNULEE,
    },
    InterventionStatus.CLOTUREE_PAR_PRESTATAIRE: {
        InterventionAction.VALIDATE: InterventionStatus.CLOTUREE_PAR_LOCATAIRE,
        InterventionAction.CONTEST: InterventionStatus.CLOTUREE_PAR_LOCATAIRE,
    },
    InterventionStatus.CLOTUREE_PAR_LOCATAIRE: {
        InterventionAction.FINALIZE: InterventionStatus.CLOTUREE_PAR_GESTIONNAIRE,
        InterventionAction.REOPEN: InterventionStatus.PLANIFIEE,
    },
}

_MANAGERS = frozenset({UserRole.MANAGER, UserRole.ADMIN})

# Roles allowed to trigger each action
ACTION_ROLES: dict[InterventionAction, frozenset[UserRole]] = {
    InterventionAction.APPROVE: _MANAGERS,
    InterventionAction.REJECT: _MANAGERS,
    InterventionAction.REQUEST_QUOTES: _MANAGERS,
    InterventionAction.START_PLANNING: _MANAGERS,
    InterventionAction.ACCEPT_QUOTE: _MANAGERS,
    InterventionAction.SCHEDULE: _MANAGERS | {UserRole.PROVIDER},
    InterventionAction.START: frozenset({UserRole.PROVIDER}),
    InterventionAction.COMPLETE: frozenset({UserRole.PROVIDER}),
    InterventionAction.VALIDATE: frozenset({UserRole.TENANT}),
    InterventionAction.CONTEST: frozenset({UserRole.TENANT}),
    InterventionAction.FINALIZE: _MANAGERS,
    InterventionAction.REOPEN: _MANAGERS,
    InterventionAction.REPLAN: _MANAGERS | {UserRole.PROVIDER, UserRole.TENANT},
    InterventionAction.CANCEL: _MANAGERS,
}

_EVERYONE = frozenset({AssignmentRole.MANAGER, AssignmentRole.PROVIDER, AssignmentRole.TENANT})

# Assignment roles notified after each action (the actor is always excluded)
AUDIENCE: dict[InterventionAction, frozenset[AssignmentRole]] = {
    InterventionAction.APPROVE: frozenset({AssignmentRole.MANAGER, AssignmentRole.TENANT}),
    InterventionAction.REJECT: frozenset({AssignmentRole.MANAGER, AssignmentRole.TENANT}),
    InterventionAction.REQUEST_QUOTES: frozenset({AssignmentRole.MANAGER, AssignmentRole.PROVIDER}),
    InterventionAction.START_PLANNING: _EVERYONE,
    InterventionAction.ACCEPT_QUOTE: _EVERYONE,
    InterventionAction.SCHEDULE: _EVERYONE,
    InterventionAction.START: frozenset({AssignmentRole.MANAGER, AssignmentRole.TENANT}),
    InterventionAction.COMPLETE: frozenset({AssignmentRole.MANAGER, AssignmentRole.TENANT}),
    InterventionAction.VALIDATE: frozenset({AssignmentRole.MANAGER, AssignmentRole.PROVIDER}),
    InterventionAction.CONTEST: frozenset({AssignmentRole.MANAGER, AssignmentRole.PROVIDER}),
    InterventionAction.FINALIZE: _EVERYONE,
    InterventionAction.REOPEN: _EVERYONE,
    InterventionAction.REPLAN: _EVERYONE,
    InterventionAction.CANCEL: _EVERYONE,
}

# Terminal statuses (no further transitions possible)
TERMINAL_STATUSES: set[InterventionStatus] = {
    InterventionStatus.REJETEE,
    InterventionStatus.ANNULEE,
    InterventionStatus.CLOTUREE_PAR_GESTIONNAIRE,
}

# Statuses in which providers may submit quotes
QUOTABLE_STATUSES: set[InterventionStatus] = {
    InterventionStatus.DEMANDE_DE_DEVIS,
}

# Statuses in which time slots may be proposed and answered
NEGOTIABLE_STATUSES: set[InterventionStatus] = {
    InterventionStatus.PLANIFICATION,
    InterventionStatus.PLANIFIEE,
}

# Upper bound on slots proposed in one call
MAX_SLOTS_PER_PROPOSAL = 10

STATUS_LABELS: dict[InterventionStatus, str] = {
    InterventionStatus.DEMANDE: "Demande",
    InterventionStatus.REJETEE: "Rejetée",
    InterventionStatus.APPROUVEE: "Approuvée",
    InterventionStatus.DEMANDE_DE_DEVIS: "Demande de devis",
    InterventionStatus.PLANIFICATION: "Planification",
    InterventionStatus.PLANIFIEE: "Planifiée",
    InterventionStatus.EN_COURS: "En cours",
    InterventionStatus.CLOTUREE_PAR_PRESTATAIRE: "Clôturée par prestataire",
    InterventionStatus.CLOTUREE_PAR_LOCATAIRE: "Clôturée par locataire",
    InterventionStatus.CLOTUREE_PAR_GESTIONNAIRE: "Clôturée par gestionnaire",
    InterventionStatus.ANNULEE: "Annulée",
}

# Minimum length of free-text justifications (reject/cancel reason, contest comments)
REASON_MIN_LENGTH = 10

SATISFACTION_MIN = 1
SATISFACTION_MAX = 5

REJECTED_QUOTE_REASON = "another quote was selected"

# Reminder windows relative to scheduled_date, in minutes: (name, lower, upper)
REMINDER_WINDOWS: tuple[tuple[str, int, int], ...] = (
    ("24h", 23 * 60, 25 * 60),
    ("1h", 50, 70),
)

# Event type strings
EVENT_INTERVENTION_CREATED = "intervention.created"
EVENT_INTERVENTION_TRANSITIONED = "intervention.transitioned"
EVENT_INTERVENTION_ASSIGNED = "intervention.assigned"
EVENT_INTERVENTION_UNASSIGNED = "intervention.unassigned"
EVENT_DOCUMENT_UPLOADED = "document.uploaded"
EVENT_QUOTE_SUBMITTED = "quote.submitted"
EVENT_QUOTE_ACCEPTED = "quote.accepted"
EVENT_QUOTE_REJECTED = "quote.rejected"
EVENT_MESSAGE_POSTED = "conversation.message_posted"
EVENT_INTERVENTION_REMINDER = "intervention.reminder"
EVENT_QUOTE_REQUESTED = "quote.requested"
EVENT_SLOTS_PROPOSED = "planning.slots_proposed"
EVENT_SLOT_RESPONSE = "planning.slot_response"
