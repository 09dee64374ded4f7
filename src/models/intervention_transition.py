from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, JSONType, UUIDPrimaryKeyMixin, enum_column, utcnow
from src.models.enums import InterventionAction, InterventionStatus

if TYPE_CHECKING:
    from src.models.intervention import Intervention


class InterventionTransition(UUIDPrimaryKeyMixin, Base):
    """Append-only audit trail of intervention status changes."""

    __tablename__ = "intervention_transitions"

    intervention_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[InterventionStatus] = mapped_column(
        enum_column(InterventionStatus, "interventionstatus"), nullable=False
    )
    to_status: Mapped[InterventionStatus] = mapped_column(
        enum_column(InterventionStatus, "interventionstatus"), nullable=False
    )
    action: Mapped[InterventionAction] = mapped_column(
        enum_column(InterventionAction, "interventionaction"), nullable=False
    )
    triggered_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    trigger_source: Mapped[str] = mapped_column(String(20), nullable=False, default="USER")
    reason: Mapped[str | None] = mapped_column(Text)
    metadata_extra: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    intervention: Mapped[Intervention] = relationship(
        "Intervention", back_populates="transitions", lazy="noload"
    )

    __table_args__ = (
        Index("ix_intervention_transitions_intervention_id", "intervention_id"),
    )
