"""
Stage Tracker Backend — Service Routine Model
===============================================

What:  ORM model for `service_routines`: the recurring-work record linked 1:1
       to a service instance.
How:   Its status is a projection of the instance lifecycle. It is written
       only through SQLStageStore.write_lifecycle_status, together with the
       instance row.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class ServiceRoutine(Base):
    """Routine record mirroring a contract service's lifecycle status."""

    __tablename__ = "service_routines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_service_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contract_services.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="not_started",
        server_default=text("'not_started'"),
    )

    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

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

    def __repr__(self) -> str:
        return f"<ServiceRoutine(contract_service_id={self.contract_service_id}, status='{self.status}')>"
