"""Intervention model: the work order tracked through the status workflow."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import InterventionStatus, InterventionUrgency

if TYPE_CHECKING:
    from src.models.intervention_assignment import InterventionAssignment
    from src.models.intervention_transition import InterventionTransition


class Intervention(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "interventions"

    reference: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    intervention_type: Mapped[str] = mapped_column(String(50), nullable=False)
    urgency: Mapped[InterventionUrgency] = mapped_column(
        enum_column(InterventionUrgency, "interventionurgency"),
        nullable=False,
        default=InterventionUrgency.NORMAL,
    )
    status: Mapped[InterventionStatus] = mapped_column(
        enum_column(InterventionStatus, "interventionstatus"),
        nullable=False,
        default=InterventionStatus.DEMANDE,
    )

    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Lots and buildings live outside this service; only the reference is kept
    lot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    # Money
    final_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    selected_quote_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))

    # Quote collection
    quote_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    quote_notes: Mapped[str | None] = mapped_column(Text)

    # Workflow payload
    is_contested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manager_comment: Mapped[str | None] = mapped_column(Text)
    provider_comment: Mapped[str | None] = mapped_column(Text)
    tenant_comment: Mapped[str | None] = mapped_column(Text)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    tenant_satisfaction: Mapped[int | None] = mapped_column(Integer)

    # Lifecycle timestamps
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    tenant_validated_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    assignments: Mapped[list[InterventionAssignment]] = relationship(
        "InterventionAssignment", back_populates="intervention", lazy="noload"
    )
    transitions: Mapped[list[InterventionTransition]] = relationship(
        "InterventionTransition", back_populates="intervention", lazy="noload"
    )

    __table_args__ = (
        Index("ix_interventions_team_id_status", "team_id", "status"),
        Index("ix_interventions_scheduled_date", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return f"<Intervention id={self.id} ref={self.reference} status={self.status}>"
