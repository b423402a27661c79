"""
Stage Tracker Backend — Test Configuration (conftest.py)
==========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── store:        InMemoryStageStore (dict-backed StageStore fake)
    ├── fixed_now:    the instant returned by the engine clock
    ├── engine:       StageProgressEngine over `store` with a fixed clock
    ├── sql_engine:   aiosqlite in-memory engine with all tables created
    ├── sql_session:  AsyncSession on `sql_engine`
    └── test_client:  HTTPX AsyncClient with get_stage_store overridden
"""

import os

# Override settings for testing BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["LOG_LEVEL"] = "WARNING"

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.exceptions import DatabaseError
from app.services.progress_engine import StageProgressEngine
from app.services.stage_store import (
    ContractServiceRecord,
    StageRecord,
    StageStore,
    StageTemplateRecord,
)


FIXED_NOW = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# In-memory StageStore
# ══════════════════════════════════════════════════════════════════════════

class InMemoryStageStore(StageStore):
    """
    Dict-backed StageStore used by engine and route tests.

    Records every write so tests can assert on what reached storage:
        stage_writes:      number of successful update_stage calls
        lifecycle_writes:  (contract_service_id, status) per lifecycle write
        locked_reads:      contract service ids read with lock=True
        fail_with:         raised by every store call when set
        fail_after_writes: update_stage raises DatabaseError once this many
                           stage writes have succeeded
    """

    def __init__(self):
        self.stages: Dict[int, StageRecord] = {}
        self.contract_services: Dict[int, ContractServiceRecord] = {}
        self.routine_status: Dict[int, str] = {}
        self.templates: Dict[int, StageTemplateRecord] = {}
        self.stage_writes = 0
        self.lifecycle_writes: List[Tuple[int, str]] = []
        self.locked_reads: List[int] = []
        self.fail_with: Optional[Exception] = None
        self.fail_after_writes: Optional[int] = None
        self._next_stage_id = 1000

    # ── Seeding helpers ───────────────────────────────────────────────────

    def add_contract_service(
        self,
        contract_service_id: int,
        service_id: int = 1,
        status: str = "not_started",
        with_routine: bool = True,
    ) -> ContractServiceRecord:
        record = ContractServiceRecord(id=contract_service_id, service_id=service_id, status=status)
        self.contract_services[contract_service_id] = record
        if with_routine:
            self.routine_status[contract_service_id] = status
        return record

    def add_stage(
        self,
        stage_id: int,
        contract_service_id: int,
        status: str = "pending",
        is_not_applicable: bool = False,
        sort_order: Optional[int] = None,
        service_stage_id: Optional[int] = None,
    ) -> StageRecord:
        record = StageRecord(
            id=stage_id,
            contract_service_id=contract_service_id,
            service_stage_id=service_stage_id or stage_id,
            name=f"Stage {stage_id}",
            status=status,
            is_not_applicable=is_not_applicable,
            sort_order=stage_id if sort_order is None else sort_order,
        )
        self.stages[stage_id] = record
        return record

    def add_template(
        self, template_id: int, service_id: int, sort_order: int = 0, is_active: bool = True
    ) -> StageTemplateRecord:
        record = StageTemplateRecord(
            id=template_id,
            service_id=service_id,
            name=f"Template {template_id}",
            sort_order=sort_order,
            is_active=is_active,
        )
        self.templates[template_id] = record
        return record

    def _check_failure(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    # ── StageStore ────────────────────────────────────────────────────────

    async def get_stage(self, stage_id: int) -> Optional[StageRecord]:
        self._check_failure()
        stage = self.stages.get(stage_id)
        return replace(stage) if stage is not None else None

    async def list_stages(self, contract_service_id: int) -> List[StageRecord]:
        self._check_failure()
        owned = [s for s in self.stages.values() if s.contract_service_id == contract_service_id]
        return [replace(s) for s in sorted(owned, key=lambda s: (s.sort_order, s.id))]

    async def update_stage(self, stage_id: int, changes: Dict[str, Any]) -> Optional[StageRecord]:
        self._check_failure()
        stage = self.stages.get(stage_id)
        if stage is None:
            return None
        if self.fail_after_writes is not None and self.stage_writes >= self.fail_after_writes:
            raise DatabaseError(context={"operation": "update_stage", "stage_id": stage_id})
        for column, value in changes.items():
            setattr(stage, column, value)
        self.stage_writes += 1
        return replace(stage)

    async def get_contract_service(
        self, contract_service_id: int, lock: bool = False
    ) -> Optional[ContractServiceRecord]:
        self._check_failure()
        if lock:
            self.locked_reads.append(contract_service_id)
        record = self.contract_services.get(contract_service_id)
        return replace(record) if record is not None else None

    async def write_lifecycle_status(
        self, contract_service_id: int, status: str, at: datetime
    ) -> None:
        self._check_failure()
        record = self.contract_services[contract_service_id]
        record.status = status
        record.updated_at = at
        if contract_service_id in self.routine_status:
            self.routine_status[contract_service_id] = status
        self.lifecycle_writes.append((contract_service_id, status))

    async def list_stage_templates(self, service_id: int) -> List[StageTemplateRecord]:
        self._check_failure()
        active = [t for t in self.templates.values() if t.service_id == service_id and t.is_active]
        return sorted(active, key=lambda t: (t.sort_order, t.id))

    async def list_contract_service_ids(self, service_id: int) -> List[int]:
        self._check_failure()
        return sorted(cs.id for cs in self.contract_services.values() if cs.service_id == service_id)

    async def list_provisioned_template_ids(self, contract_service_id: int) -> Set[int]:
        self._check_failure()
        return {
            s.service_stage_id
            for s in self.stages.values()
            if s.contract_service_id == contract_service_id
        }

    async def create_stage(
        self, contract_service_id: int, service_stage_id: int, at: datetime
    ) -> None:
        self._check_failure()
        template = self.templates[service_stage_id]
        self._next_stage_id += 1
        self.stages[self._next_stage_id] = StageRecord(
            id=self._next_stage_id,
            contract_service_id=contract_service_id,
            service_stage_id=service_stage_id,
            name=template.name,
            status="pending",
            is_not_applicable=False,
            sort_order=template.sort_order,
            updated_at=at,
        )


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures (created fresh for each test)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def store() -> InMemoryStageStore:
    return InMemoryStageStore()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def engine(store) -> StageProgressEngine:
    """StageProgressEngine over the in-memory store, clock pinned to FIXED_NOW."""
    return StageProgressEngine(store, clock=lambda: FIXED_NOW)


@pytest_asyncio.fixture
async def sql_engine():
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive, so every session sees the
    same in-memory database.
    """
    import app.models  # noqa: F401  (registers the tables)

    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest_asyncio.fixture
async def sql_session(sql_engine):
    factory = async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_client(store):
    """
    Async HTTP client against the FastAPI app, backed by the in-memory store.

    Usage:
        async def test_progress(test_client, store):
            store.add_contract_service(1)
            response = await test_client.get("/api/contract-services/1/stages/progress")
            assert response.status_code == 200
    """
    from app.dependencies import get_stage_store
    from app.main import app

    app.dependency_overrides[get_stage_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
