"""
Stage Tracker Backend — Contract Service Stage Model
======================================================

What:  ORM model for `contract_service_stages`: one checklist item of a
       service instance, created from a stage template.
How:   Name, description, category and ordering live on the template and are
       loaded through the `template` relationship (eager, see SQLStageStore).

Invariant:
    A stage with is_not_applicable = true is excluded from progress
    (numerator and denominator).
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.service_stage import ServiceStage


class ContractServiceStage(Base):
    """
    A stage of a contracted service instance.

    Lifecycle:
        1. Provisioned as status='pending', is_not_applicable=false
        2. Toggled between pending/completed; completed_at/completed_by are
           set on completion and cleared when reopened
        3. Optionally flagged not-applicable
    """

    __tablename__ = "contract_service_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_service_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contract_services.id", ondelete="CASCADE"),
        nullable=False,
    )

    service_stage_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("service_stages.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
        comment="pending or completed",
    )

    is_not_applicable: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    completed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=None)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    template: Mapped[ServiceStage] = relationship(ServiceStage, lazy="raise")

    __table_args__ = (
        UniqueConstraint(
            "contract_service_id",
            "service_stage_id",
            name="uq_contract_service_stage_template",
        ),
        Index("idx_contract_service_stages_owner", "contract_service_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContractServiceStage(id={self.id}, contract_service_id={self.contract_service_id}, "
            f"status='{self.status}', is_not_applicable={self.is_not_applicable})>"
        )
