"""Pure lookups over the intervention transition and role tables."""

from __future__ import annotations

from src.models.enums import InterventionAction, InterventionStatus, UserRole
from src.modules.interventions.constants import ACTION_ROLES, TERMINAL_STATUSES, VALID_TRANSITIONS


def next_status(
    status: InterventionStatus, action: InterventionAction
) -> InterventionStatus | None:
    """Status reached by applying ``action`` from ``status``, or None if illegal."""
    return VALID_TRANSITIONS.get(status, {}).get(action)


def role_allowed(action: InterventionAction, role: UserRole) -> bool:
    return role in ACTION_ROLES.get(action, frozenset())


def can_transition(
    status: InterventionStatus, action: InterventionAction, role: UserRole
) -> bool:
    return next_status(status, action) is not None and role_allowed(action, role)


def allowed_actions(status: InterventionStatus, role: UserRole) -> list[InterventionAction]:
    return [
        action
        for action in VALID_TRANSITIONS.get(status, {})
        if role_allowed(action, role)
    ]


def is_terminal(status: InterventionStatus) -> bool:
    return status in TERMINAL_STATUSES
