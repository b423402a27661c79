"""
Stage Tracker Backend — SQLAlchemy Stage Store
================================================

What:  Concrete StageStore backed by an async SQLAlchemy session.
How:   Every method runs inside the request's session (see get_db_session);
       writes are flushed immediately so later reads in the same request see
       them, and the whole request commits or rolls back as one transaction.
Who:   Built per request by the get_stage_store dependency.

Error translation:
    SQLAlchemyError → DatabaseError. The original exception type is kept in
    the error context for the server log; nothing is retried here.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, joinedload

from app.exceptions import DatabaseError
from app.models.contract_service import ContractService
from app.models.contract_service_stage import ContractServiceStage
from app.models.service_routine import ServiceRoutine
from app.models.service_stage import ServiceStage
from app.services.stage_store import (
    ContractServiceRecord,
    StageRecord,
    StageStore,
    StageTemplateRecord,
)

logger = logging.getLogger(__name__)

# Columns a caller may change through update_stage
_STAGE_MUTABLE_COLUMNS = {
    "status",
    "is_not_applicable",
    "completed_at",
    "completed_by",
    "updated_by",
    "updated_at",
}


def _to_stage_record(stage: ContractServiceStage) -> StageRecord:
    template = stage.template
    return StageRecord(
        id=stage.id,
        contract_service_id=stage.contract_service_id,
        service_stage_id=stage.service_stage_id,
        name=template.name if template is not None else "Unnamed stage",
        description=template.description if template is not None else None,
        category=template.category if template is not None else None,
        sort_order=template.sort_order if template is not None else 0,
        status=stage.status,
        is_not_applicable=stage.is_not_applicable,
        completed_at=stage.completed_at,
        completed_by=stage.completed_by,
        updated_by=stage.updated_by,
        updated_at=stage.updated_at,
    )


class SQLStageStore(StageStore):
    """StageStore over one AsyncSession (one request, one transaction)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _storage_error(self, operation: str, exc: Exception, **context: Any) -> DatabaseError:
        logger.error("Database error during %s: %s", operation, str(exc), exc_info=True)
        return DatabaseError(
            context={"operation": operation, "error_type": type(exc).__name__, **context}
        )

    async def _load_stage(self, stage_id: int) -> Optional[ContractServiceStage]:
        """Stage with its template; objects already in the session are refreshed."""
        result = await self._session.execute(
            select(ContractServiceStage)
            .options(joinedload(ContractServiceStage.template))
            .where(ContractServiceStage.id == stage_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ── Stages ────────────────────────────────────────────────────────────

    async def get_stage(self, stage_id: int) -> Optional[StageRecord]:
        try:
            stage = await self._load_stage(stage_id)
        except SQLAlchemyError as e:
            raise self._storage_error("get_stage", e, stage_id=stage_id)
        return _to_stage_record(stage) if stage is not None else None

    async def list_stages(self, contract_service_id: int) -> List[StageRecord]:
        try:
            result = await self._session.execute(
                select(ContractServiceStage)
                .join(ContractServiceStage.template)
                .options(contains_eager(ContractServiceStage.template))
                .where(ContractServiceStage.contract_service_id == contract_service_id)
                .order_by(ServiceStage.sort_order, ContractServiceStage.id)
                .execution_options(populate_existing=True)
            )
            stages = result.scalars().all()
        except SQLAlchemyError as e:
            raise self._storage_error(
                "list_stages", e, contract_service_id=contract_service_id
            )
        return [_to_stage_record(stage) for stage in stages]

    async def update_stage(
        self, stage_id: int, changes: Dict[str, Any]
    ) -> Optional[StageRecord]:
        unknown = set(changes) - _STAGE_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported stage columns: {sorted(unknown)}")

        try:
            stage = await self._load_stage(stage_id)
            if stage is None:
                return None
            for column, value in changes.items():
                setattr(stage, column, value)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise self._storage_error("update_stage", e, stage_id=stage_id)
        return _to_stage_record(stage)

    # ── Service instance / routine ────────────────────────────────────────

    async def get_contract_service(
        self, contract_service_id: int, lock: bool = False
    ) -> Optional[ContractServiceRecord]:
        query = select(ContractService).where(ContractService.id == contract_service_id)
        if lock:
            # SELECT ... FOR UPDATE; dialects without row locks ignore it
            query = query.with_for_update()
        try:
            result = await self._session.execute(query)
            row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._storage_error(
                "get_contract_service", e, contract_service_id=contract_service_id
            )
        if row is None:
            return None
        return ContractServiceRecord(
            id=row.id,
            service_id=row.service_id,
            status=row.status,
            updated_at=row.updated_at,
        )

    async def write_lifecycle_status(
        self, contract_service_id: int, status: str, at: datetime
    ) -> None:
        try:
            await self._session.execute(
                update(ContractService)
                .where(ContractService.id == contract_service_id)
                .values(status=status, updated_at=at)
            )
            await self._session.execute(
                update(ServiceRoutine)
                .where(ServiceRoutine.contract_service_id == contract_service_id)
                .values(status=status, updated_at=at)
            )
            await self._session.flush()
        except SQLAlchemyError as e:
            raise self._storage_error(
                "write_lifecycle_status",
                e,
                contract_service_id=contract_service_id,
                status=status,
            )
        logger.info(
            "Contract service %s and its routine set to '%s'", contract_service_id, status
        )

    # ── Provisioning ──────────────────────────────────────────────────────

    async def list_stage_templates(self, service_id: int) -> List[StageTemplateRecord]:
        try:
            result = await self._session.execute(
                select(ServiceStage)
                .where(ServiceStage.service_id == service_id, ServiceStage.is_active.is_(True))
                .order_by(ServiceStage.sort_order, ServiceStage.id)
            )
            templates = result.scalars().all()
        except SQLAlchemyError as e:
            raise self._storage_error("list_stage_templates", e, service_id=service_id)
        return [
            StageTemplateRecord(
                id=t.id,
                service_id=t.service_id,
                name=t.name,
                sort_order=t.sort_order,
                is_active=t.is_active,
            )
            for t in templates
        ]

    async def list_contract_service_ids(self, service_id: int) -> List[int]:
        try:
            result = await self._session.execute(
                select(ContractService.id)
                .where(ContractService.service_id == service_id)
                .order_by(ContractService.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._storage_error("list_contract_service_ids", e, service_id=service_id)

    async def list_provisioned_template_ids(self, contract_service_id: int) -> Set[int]:
        try:
            result = await self._session.execute(
                select(ContractServiceStage.service_stage_id).where(
                    ContractServiceStage.contract_service_id == contract_service_id
                )
            )
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._storage_error(
                "list_provisioned_template_ids", e, contract_service_id=contract_service_id
            )

    async def create_stage(
        self, contract_service_id: int, service_stage_id: int, at: datetime
    ) -> None:
        self._session.add(
            ContractServiceStage(
                contract_service_id=contract_service_id,
                service_stage_id=service_stage_id,
                status="pending",
                is_not_applicable=False,
                created_at=at,
                updated_at=at,
            )
        )
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise self._storage_error(
                "create_stage",
                e,
                contract_service_id=contract_service_id,
                service_stage_id=service_stage_id,
            )
