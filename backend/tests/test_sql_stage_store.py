"""
Stage Tracker Backend — SQLAlchemy Stage Store Tests
=======================================================

What:  Tests for SQLStageStore against a real (in-memory SQLite) database.
How:   Tables are created from the ORM metadata per test; the store runs on
       an AsyncSession exactly as it does inside a request.

What we test:
    ✅ Stages come back flattened with template fields, in checklist order
    ✅ Stage updates and missing-stage handling
    ✅ Lifecycle status written to the instance and its routine together
    ✅ Provisioning queries and stage creation
    ✅ SQLAlchemy failures surface as DatabaseError
    ✅ The engine end to end on top of the SQL store
    ✅ A failed lifecycle write rolls back the whole request
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import get_db_session
from app.exceptions import DatabaseError
from app.models import ContractService, ContractServiceStage, ServiceRoutine, ServiceStage
from app.schemas.stage import StageStatus
from app.services.progress_engine import StageProgressEngine
from app.services.sql_stage_store import SQLStageStore

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def seeded_factory(sql_engine):
    """
    Seeds one catalogue service (id 1) with three active templates and one
    inactive, and two contract services. Contract service 1 is provisioned
    with two of the templates and has a routine.
    """
    factory = async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as seed:
        seed.add_all(
            [
                ServiceStage(id=1, service_id=1, name="Kick-off", sort_order=2),
                ServiceStage(id=2, service_id=1, name="Briefing", sort_order=1),
                ServiceStage(id=3, service_id=1, name="Delivery", sort_order=3),
                ServiceStage(id=4, service_id=1, name="Legacy", sort_order=4, is_active=False),
                ContractService(id=1, contract_id=100, service_id=1),
                ContractService(id=2, contract_id=101, service_id=1),
                ServiceRoutine(contract_service_id=1),
            ]
        )
        await seed.flush()
        seed.add_all(
            [
                ContractServiceStage(id=10, contract_service_id=1, service_stage_id=1),
                ContractServiceStage(id=11, contract_service_id=1, service_stage_id=2),
            ]
        )
        await seed.commit()
    return factory


@pytest_asyncio.fixture
async def seeded_session(seeded_factory):
    """A new session, so the store starts from an empty identity map as in a request."""
    async with seeded_factory() as session:
        yield session


async def _routine_status(session, contract_service_id):
    result = await session.execute(
        select(ServiceRoutine.status).where(
            ServiceRoutine.contract_service_id == contract_service_id
        )
    )
    return result.scalar_one()


async def _service_status(session, contract_service_id):
    result = await session.execute(
        select(ContractService.status).where(ContractService.id == contract_service_id)
    )
    return result.scalar_one()


class TestStageReads:
    """Tests for get_stage / list_stages."""

    @pytest.mark.asyncio
    async def test_list_stages_in_template_order(self, seeded_session):
        store = SQLStageStore(seeded_session)

        stages = await store.list_stages(1)

        assert [s.id for s in stages] == [11, 10]
        assert [s.name for s in stages] == ["Briefing", "Kick-off"]
        assert all(s.status == "pending" and s.is_not_applicable is False for s in stages)

    @pytest.mark.asyncio
    async def test_list_stages_of_unprovisioned_instance_is_empty(self, seeded_session):
        assert await SQLStageStore(seeded_session).list_stages(2) == []

    @pytest.mark.asyncio
    async def test_get_stage(self, seeded_session):
        store = SQLStageStore(seeded_session)

        stage = await store.get_stage(10)

        assert stage.contract_service_id == 1
        assert stage.service_stage_id == 1
        assert stage.sort_order == 2
        assert await store.get_stage(999) is None


class TestStageWrites:
    """Tests for update_stage."""

    @pytest.mark.asyncio
    async def test_update_stage_persists_changes(self, seeded_session):
        store = SQLStageStore(seeded_session)

        updated = await store.update_stage(
            10, {"status": "completed", "completed_by": 4, "updated_by": 4, "updated_at": NOW}
        )

        assert updated.status == "completed"
        assert updated.completed_by == 4
        result = await seeded_session.execute(
            select(ContractServiceStage.status).where(ContractServiceStage.id == 10)
        )
        assert result.scalar_one() == "completed"

    @pytest.mark.asyncio
    async def test_update_missing_stage_returns_none(self, seeded_session):
        assert await SQLStageStore(seeded_session).update_stage(999, {"status": "completed"}) is None

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self, seeded_session):
        with pytest.raises(ValueError):
            await SQLStageStore(seeded_session).update_stage(10, {"contract_service_id": 2})


class TestLifecycleWrites:
    """Tests for get_contract_service / write_lifecycle_status."""

    @pytest.mark.asyncio
    async def test_get_contract_service_with_lock(self, seeded_session):
        store = SQLStageStore(seeded_session)

        record = await store.get_contract_service(1, lock=True)

        assert record.id == 1
        assert record.service_id == 1
        assert record.status == "not_started"
        assert await store.get_contract_service(999) is None

    @pytest.mark.asyncio
    async def test_writes_instance_and_routine(self, seeded_session):
        store = SQLStageStore(seeded_session)

        await store.write_lifecycle_status(1, "in_progress", NOW)

        assert await _service_status(seeded_session, 1) == "in_progress"
        assert await _routine_status(seeded_session, 1) == "in_progress"

    @pytest.mark.asyncio
    async def test_instance_without_routine(self, seeded_session):
        store = SQLStageStore(seeded_session)

        await store.write_lifecycle_status(2, "completed", NOW)

        assert await _service_status(seeded_session, 2) == "completed"
        assert await _routine_status(seeded_session, 1) == "not_started"


class TestProvisioning:
    """Tests for the template/provisioning queries."""

    @pytest.mark.asyncio
    async def test_lists_active_templates_in_order(self, seeded_session):
        templates = await SQLStageStore(seeded_session).list_stage_templates(1)
        assert [t.id for t in templates] == [2, 1, 3]

    @pytest.mark.asyncio
    async def test_lists_instances_and_provisioned_templates(self, seeded_session):
        store = SQLStageStore(seeded_session)

        assert await store.list_contract_service_ids(1) == [1, 2]
        assert await store.list_provisioned_template_ids(1) == {1, 2}
        assert await store.list_provisioned_template_ids(2) == set()

    @pytest.mark.asyncio
    async def test_create_stage(self, seeded_session):
        store = SQLStageStore(seeded_session)

        await store.create_stage(2, 3, NOW)

        stages = await store.list_stages(2)
        assert len(stages) == 1
        assert stages[0].name == "Delivery"
        assert stages[0].status == "pending"


class TestStorageErrors:
    """SQLAlchemy failures are translated to DatabaseError."""

    @pytest.mark.asyncio
    async def test_missing_tables_raise_database_error(self):
        bare_engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        factory = async_sessionmaker(bare_engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with factory() as session:
                store = SQLStageStore(session)
                with pytest.raises(DatabaseError) as exc_info:
                    await store.list_stages(1)
                assert exc_info.value.context["operation"] == "list_stages"
        finally:
            await bare_engine.dispose()


class TestEngineOnSQLStore:
    """The progress engine end to end on the SQL store."""

    @pytest.mark.asyncio
    async def test_completion_updates_instance_and_routine(self, seeded_session):
        engine = StageProgressEngine(SQLStageStore(seeded_session), clock=lambda: NOW)

        first = await engine.update_stage_status(10, StageStatus.COMPLETED, actor=1)
        assert first.auto_started is True
        assert await _service_status(seeded_session, 1) == "in_progress"
        assert await _routine_status(seeded_session, 1) == "in_progress"

        second = await engine.update_stage_status(11, StageStatus.COMPLETED, actor=1)
        assert second.auto_completed is True
        assert second.progress.progress_percentage == 100
        assert await _service_status(seeded_session, 1) == "completed"
        assert await _routine_status(seeded_session, 1) == "completed"

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, seeded_session):
        engine = StageProgressEngine(SQLStageStore(seeded_session), clock=lambda: NOW)

        assert await engine.sync_stages_from_templates(1) == (4, 2)
        assert await engine.sync_stages_from_templates(1) == (0, 2)

        stages, progress = await engine.list_stages(2)
        assert [s.name for s in stages] == ["Briefing", "Kick-off", "Delivery"]
        assert progress.total_count == 3


class RoutineWriteFailingStore(SQLStageStore):
    """Writes the instance row, then fails before the routine row is written."""

    async def write_lifecycle_status(self, contract_service_id, status, at):
        await self._session.execute(
            update(ContractService)
            .where(ContractService.id == contract_service_id)
            .values(status=status, updated_at=at)
        )
        await self._session.flush()
        raise DatabaseError(context={"operation": "write_lifecycle_status"})


class TestRequestTransaction:
    """get_db_session commits or rolls back every write of a request together."""

    @pytest.mark.asyncio
    async def test_failed_lifecycle_write_discards_all_writes(self, seeded_factory):
        with patch("app.database.async_session_factory", seeded_factory):
            sessions = get_db_session()
            session = await sessions.__anext__()
            engine = StageProgressEngine(RoutineWriteFailingStore(session), clock=lambda: NOW)

            with pytest.raises(DatabaseError) as exc_info:
                await engine.update_stage_status(10, StageStatus.COMPLETED, actor=1)
            # FastAPI throws the handler's exception into the dependency
            with pytest.raises(DatabaseError):
                await sessions.athrow(exc_info.value)

        async with seeded_factory() as check:
            stage_status = await check.execute(
                select(ContractServiceStage.status).where(ContractServiceStage.id == 10)
            )
            assert stage_status.scalar_one() == "pending"
            assert await _service_status(check, 1) == "not_started"
            assert await _routine_status(check, 1) == "not_started"

    @pytest.mark.asyncio
    async def test_successful_request_commits_instance_and_routine(self, seeded_factory):
        with patch("app.database.async_session_factory", seeded_factory):
            sessions = get_db_session()
            session = await sessions.__anext__()
            engine = StageProgressEngine(SQLStageStore(session), clock=lambda: NOW)

            result = await engine.update_stage_status(10, StageStatus.COMPLETED, actor=1)
            assert result.auto_started is True
            with pytest.raises(StopAsyncIteration):
                await sessions.__anext__()

        async with seeded_factory() as check:
            assert await _service_status(check, 1) == "in_progress"
            assert await _routine_status(check, 1) == "in_progress"
