# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.conversation import (
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
)
from src.models.enums import (
    AssignmentRole,
    EffectStatus,
    InterventionAction,
    InterventionStatus,
    InterventionUrgency,
    NotificationPriority,
    NotificationType,
    QuoteStatus,
    ReportType,
    SlotResponseType,
    ThreadType,
    TimeSlotStatus,
    TriggerSource,
    UserRole,
)
from src.models.intervention import Intervention
from src.models.intervention_assignment import InterventionAssignment
from src.models.intervention_document import InterventionDocument
from src.models.intervention_report import InterventionReport
from src.models.intervention_transition import InterventionTransition
from src.models.notification import Notification
from src.models.push_subscription import PushSubscription
from src.models.quote import Quote
from src.models.team import Team
from src.models.time_slot import InterventionTimeSlot, TimeSlotResponse
from src.models.user import User

__all__ = [
    "AssignmentRole",
    "ConversationMessage",
    "ConversationParticipant",
    "ConversationThread",
    "EffectStatus",
    "Intervention",
    "InterventionAction",
    "InterventionAssignment",
    "InterventionDocument",
    "InterventionReport",
    "InterventionStatus",
    "InterventionTimeSlot",
    "InterventionTransition",
    "InterventionUrgency",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "PushSubscription",
    "Quote",
    "QuoteStatus",
    "ReportType",
    "SlotResponseType",
    "Team",
    "ThreadType",
    "TimeSlotResponse",
    "TimeSlotStatus",
    "TriggerSource",
    "User",
    "UserRole",
]
