from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import NotificationPriority, NotificationType


class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """In-app notification, one row per (event, recipient)."""

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    team_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    type: Mapped[NotificationType] = mapped_column(
        enum_column(NotificationType, "notificationtype"), nullable=False
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        enum_column(NotificationPriority, "notificationpriority"),
        nullable=False,
        default=NotificationPriority.NORMAL,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_personal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_extra: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    related_entity_type: Mapped[str | None] = mapped_column(String(50))
    related_entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True))

    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_notifications_user_id_read", "user_id", "read"),
        Index("ix_notifications_related_entity", "related_entity_type", "related_entity_id"),
    )
