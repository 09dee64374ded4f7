import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    PROVIDER = "provider"
    TENANT = "tenant"


class AssignmentRole(str, enum.Enum):
    MANAGER = "manager"
    PROVIDER = "provider"
    TENANT = "tenant"


# ── Interventions ─────────────────────────────────────────────────────────


class InterventionStatus(str, enum.Enum):
    DEMANDE = "demande"
    REJETEE = "rejetee"
    APPROUVEE = "approuvee"
    DEMANDE_DE_DEVIS = "demande_de_devis"
    PLANIFICATION = "planification"
    PLANIFIEE = "planifiee"
    EN_COURS = "en_cours"
    CLOTUREE_PAR_PRESTATAIRE = "cloturee_par_prestataire"
    CLOTUREE_PAR_LOCATAIRE = "cloturee_par_locataire"
    CLOTUREE_PAR_GESTIONNAIRE = "cloturee_par_gestionnaire"
    ANNULEE = "annulee"


class InterventionAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_QUOTES = "request_quotes"
    START_PLANNING = "start_planning"
    ACCEPT_QUOTE = "accept_quote"
    SCHEDULE = "schedule"
    START = "start"
    COMPLETE = "complete"
    VALIDATE = "validate"
    CONTEST = "contest"
    FINALIZE = "finalize"
    REOPEN = "reopen"
    REPLAN = "replan"
    CANCEL = "cancel"


class InterventionUrgency(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReportType(str, enum.Enum):
    PROVIDER_REPORT = "provider_report"
    TENANT_REPORT = "tenant_report"
    MANAGER_REPORT = "manager_report"


class TriggerSource(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class TimeSlotStatus(str, enum.Enum):
    PROPOSED = "proposed"
    SELECTED = "selected"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SlotResponseType(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTER_PROPOSED = "counter_proposed"


# ── Quotes ────────────────────────────────────────────────────────────────


class QuoteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# ── Conversations ─────────────────────────────────────────────────────────


class ThreadType(str, enum.Enum):
    GROUP = "group"
    TENANT_TO_MANAGERS = "tenant_to_managers"
    PROVIDER_TO_MANAGERS = "provider_to_managers"


# ── Notifications ─────────────────────────────────────────────────────────


class NotificationType(str, enum.Enum):
    INTERVENTION = "intervention"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    DOCUMENT = "document"
    CHAT = "chat"
    REMINDER = "reminder"
    SYSTEM = "system"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class EffectStatus(str, enum.Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"
