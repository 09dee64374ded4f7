from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import AssignmentRole

if TYPE_CHECKING:
    from src.models.intervention import Intervention
    from src.models.user import User


class InterventionAssignment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Binds a user to an intervention with a role.

    ``is_primary`` marks the main recipient of personal notifications for
    that role; other assignees see the event as team-wide.
    """

    __tablename__ = "intervention_assignments"

    intervention_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[AssignmentRole] = mapped_column(
        enum_column(AssignmentRole, "assignmentrole"), nullable=False
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )

    intervention: Mapped[Intervention] = relationship(
        "Intervention", back_populates="assignments", lazy="noload"
    )
    user: Mapped[User] = relationship("User", foreign_keys=[user_id], lazy="noload")

    __table_args__ = (
        UniqueConstraint("intervention_id", "user_id", "role", name="uq_assignment_user_role"),
        Index("ix_intervention_assignments_intervention_id", "intervention_id"),
        Index("ix_intervention_assignments_user_id", "user_id"),
    )
