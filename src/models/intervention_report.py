from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, enum_column
from src.models.enums import ReportType


class InterventionReport(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "intervention_reports"

    intervention_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("interventions.id", ondelete="CASCADE"),
        nullable=False,
    )
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
    )
    report_type: Mapped[ReportType] = mapped_column(
        enum_column(ReportType, "reporttype"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_contest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_intervention_reports_intervention_id", "intervention_id"),
    )
