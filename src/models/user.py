from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import UserRole


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A team member or contact.

    Users without ``auth_user_id`` are informational contacts: they can be
    assigned and emailed but never sign in.
    """

    __tablename__ = "users"

    team_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
    )
    auth_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320))
    role: Mapped[UserRole] = mapped_column(enum_column(UserRole, "userrole"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_users_team_id_role", "team_id", "role"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role} team={self.team_id}>"
