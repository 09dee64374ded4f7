from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import SlotResponseType, TimeSlotStatus


class InterventionTimeSlot(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A time window proposed while an intervention is being planned.

    Selecting a slot schedules the intervention at ``start_at``; the other
    proposed slots are then cancelled.
    """

    __tablename__ = "intervention_time_slots"

    intervention_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
    )
    proposed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[TimeSlotStatus] = mapped_column(
        enum_column(TimeSlotStatus, "timeslotstatus"),
        nullable=False,
        default=TimeSlotStatus.PROPOSED,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    selected_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    responses: Mapped[list[TimeSlotResponse]] = relationship(
        "TimeSlotResponse",
        back_populates="slot",
        foreign_keys="TimeSlotResponse.slot_id",
        lazy="noload",
    )

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_time_slots_end_after_start"),
        Index("ix_intervention_time_slots_intervention_id_status", "intervention_id", "status"),
        Index(
            "uq_time_slots_one_selected",
            "intervention_id",
            unique=True,
            postgresql_where=text("status = 'selected'"),
            sqlite_where=text("status = 'selected'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<InterventionTimeSlot id={self.id} start={self.start_at} status={self.status}>"


class TimeSlotResponse(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One participant's answer to a proposed slot. Answering again replaces it."""

    __tablename__ = "time_slot_responses"

    slot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("intervention_time_slots.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    response: Mapped[SlotResponseType] = mapped_column(
        enum_column(SlotResponseType, "slotresponsetype"), nullable=False
    )
    comment: Mapped[str | None] = mapped_column(Text)
    # Slot created by a counter-proposal
    counter_slot_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("intervention_time_slots.id", ondelete="SET NULL"),
    )

    slot: Mapped[InterventionTimeSlot] = relationship(
        "InterventionTimeSlot",
        back_populates="responses",
        foreign_keys=[slot_id],
        lazy="noload",
    )

    __table_args__ = (
        UniqueConstraint("slot_id", "user_id", name="uq_time_slot_response_user"),
    )
