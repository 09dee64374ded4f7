"""Titles, messages and email bodies for notification events."""

from __future__ import annotations

import html
from dataclasses import dataclass

from src.config import settings
from src.models.enums import InterventionAction, InterventionStatus
from src.modules.interventions.constants import STATUS_LABELS

STATUS_TITLES: dict[InterventionStatus, str] = {
    InterventionStatus.APPROUVEE: "Intervention approuvée",
    InterventionStatus.REJETEE: "Intervention rejetée",
    InterventionStatus.DEMANDE_DE_DEVIS: "Devis demandés",
    InterventionStatus.PLANIFICATION: "Planification en cours",
    InterventionStatus.PLANIFIEE: "Intervention planifiée",
    InterventionStatus.EN_COURS: "Intervention en cours",
    InterventionStatus.CLOTUREE_PAR_PRESTATAIRE: "Intervention terminée par le prestataire",
    InterventionStatus.CLOTUREE_PAR_LOCATAIRE: "Intervention validée",
    InterventionStatus.CLOTUREE_PAR_GESTIONNAIRE: "Intervention clôturée",
    InterventionStatus.ANNULEE: "Intervention annulée",
}

ROLE_GREETINGS: dict[str, str] = {
    "manager": "gestionnaire",
    "admin": "gestionnaire",
    "provider": "prestataire",
    "tenant": "locataire",
}


@dataclass
class RenderedEmail:
    to: str
    subject: str
    html: str
    text: str
    tags: dict[str, str] | None = None


def intervention_url(intervention_id) -> str:
    return f"{settings.app_base_url.rstrip('/')}/interventions/{intervention_id}"


def thread_url(intervention_id, thread_id) -> str:
    return f"{intervention_url(intervention_id)}/conversations/{thread_id}"


def status_change_title(action: InterventionAction, to_status: InterventionStatus) -> str:
    if action == InterventionAction.CONTEST:
        return "Intervention contestée"
    if action == InterventionAction.REOPEN:
        return "Intervention replanifiée"
    if action == InterventionAction.REPLAN:
        return "Replanification demandée"
    return STATUS_TITLES.get(to_status, "Mise à jour intervention")


def status_change_message(
    reference: str,
    from_status: InterventionStatus,
    to_status: InterventionStatus,
    reason: str | None = None,
) -> str:
    if reason:
        return f"{reference} : {reason}"
    return (
        f"{reference} : statut changé de {STATUS_LABELS[from_status]} "
        f"vers {STATUS_LABELS[to_status]}"
    )


def render_email(
    to: str,
    recipient_name: str,
    recipient_role: str,
    title: str,
    message: str,
    url: str,
    tags: dict[str, str] | None = None,
) -> RenderedEmail:
    """Plain transactional email personalised with the recipient's name and role."""
    greeting = f"Bonjour {recipient_name}" if recipient_name else "Bonjour"
    role_label = ROLE_GREETINGS.get(recipient_role)
    footer = f"Vous recevez cet email en tant que {role_label}." if role_label else ""
    text = "\n\n".join(part for part in (f"{greeting},", message, url, footer) if part)
    body = (
        f"<p>{html.escape(greeting)},</p>"
        f"<p>{html.escape(message)}</p>"
        f'<p><a href="{html.escape(url, quote=True)}">Voir le détail</a></p>'
    )
    if footer:
        body += f"<p><small>{html.escape(footer)}</small></p>"
    return RenderedEmail(to=to, subject=title, html=body, text=text, tags=tags)
