"""
Stage Tracker Backend — Stage Template Model
==============================================

What:  ORM model for the `service_stages` table: the catalogue-level checklist
       of a service, from which each contracted instance gets its own stages.
Who:   Read by SQLStageStore for stage names/ordering and for provisioning.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ServiceStage(Base):
    """
    A stage template belonging to a catalogue service.

    Templates are ordered by sort_order; inactive templates are skipped when
    stages are provisioned for service instances.
    """

    __tablename__ = "service_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    service_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Catalogue service owning this template",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, default=None)

    sort_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Position of the stage within the service checklist",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_service_stages_service_id", "service_id", "sort_order"),
    )

    def __repr__(self) -> str:
        return f"<ServiceStage(id={self.id}, service_id={self.service_id}, name='{self.name}')>"
