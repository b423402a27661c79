"""
Stage Tracker Backend — Contract Service (Service Instance) Model
==================================================================

What:  ORM model for `contract_services`: one service sold within a contract.
Why:   Its status is derived from stage completion by the progress engine.

Status values:
    not_started → in_progress → completed are driven by the engine.
    Other values (e.g. cancelled) may be written by other parts of the
    system; the engine only moves an instance forward and never out of
    `completed`.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ContractService(Base):
    """A contracted service instance whose fulfilment is tracked via stages."""

    __tablename__ = "contract_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    service_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Catalogue service this instance was sold from",
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="not_started",
        server_default=text("'not_started'"),
        comment="Lifecycle: not_started, in_progress, completed, ...",
    )

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

    __table_args__ = (
        Index("idx_contract_services_service_id", "service_id"),
    )

    def __repr__(self) -> str:
        return f"<ContractService(id={self.id}, status='{self.status}')>"
