"""
Stage Tracker Backend — Stage Progress Engine
===============================================

What:  Tracks completion of the stages of a contracted service instance,
       computes aggregate progress, and derives the instance's lifecycle
       status (mirrored onto its routine) from that progress.
How:   Depends only on the StageStore port; the concrete store is injected
       by the composition root (FastAPI dependency) or by tests.
Who:   Called by the stage route handlers.

Status transitions driven here:
    not_started --(0 < progress < 100)--> in_progress --(progress = 100)--> completed
    not_started --(progress = 100)---------------------------------------> completed

    Nothing moves an instance out of `completed`. A percentage of 0 never
    triggers a transition.

Progress:
    applicable = stages not flagged not-applicable
    completed  = applicable stages with status 'completed'
    percentage = 0 when applicable == 0, else round-half-up(100 * completed / applicable)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app.exceptions import NotFoundError, ValidationError
from app.schemas.stage import (
    MAX_ID,
    ProgressSnapshot,
    ReconcileResult,
    ServiceStatus,
    StageStatus,
)
from app.services.stage_store import StageRecord, StageStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_id(value: Any, field_name: str) -> int:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value <= MAX_ID:
        raise ValidationError(
            f"{field_name} must be an integer between 1 and {MAX_ID}", field=field_name
        )
    return value


def _require_status(value: Any) -> StageStatus:
    try:
        return StageStatus(value)
    except ValueError:
        raise ValidationError(
            "status must be one of: pending, completed",
            field="status",
            context={"value": str(value)},
        ) from None


def progress_percentage(completed: int, applicable: int) -> int:
    """
    Integer percentage rounded half up (12.5 → 13), 0 when nothing is applicable.

    Pure integer arithmetic, so no float rounding artefacts. Rounding can
    reach 100 with a stage still open (199 of 200 gives 100), which is
    enough to complete the service.
    """
    if applicable <= 0:
        return 0
    return (200 * completed + applicable) // (2 * applicable)


def snapshot_from_stages(contract_service_id: int, stages: Sequence[StageRecord]) -> ProgressSnapshot:
    applicable = [stage for stage in stages if not stage.is_not_applicable]
    completed = [stage for stage in applicable if stage.status == StageStatus.COMPLETED.value]
    return ProgressSnapshot(
        contract_service_id=contract_service_id,
        completed_count=len(completed),
        applicable_count=len(applicable),
        total_count=len(stages),
        progress_percentage=progress_percentage(len(completed), len(applicable)),
    )


@dataclass
class StageStatusChange:
    """One item of a bulk status update."""

    stage_id: int
    status: StageStatus


@dataclass
class BatchFailure:
    stage_id: int
    error: str
    message: str


@dataclass
class BatchOutcome:
    """Stages updated by a batch (request order) and the items that failed."""

    stages: List[StageRecord] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)


@dataclass
class StageMutationResult:
    stage: StageRecord
    progress: ProgressSnapshot
    auto_started: bool = False
    auto_completed: bool = False


@dataclass
class BulkMutationResult:
    stages: List[StageRecord]
    failures: List[BatchFailure]
    reconciliations: Dict[int, ReconcileResult]

    @property
    def auto_started_services(self) -> List[int]:
        return [cs_id for cs_id, r in self.reconciliations.items() if r.auto_started]

    @property
    def auto_completed_services(self) -> List[int]:
        return [cs_id for cs_id, r in self.reconciliations.items() if r.auto_completed]


class StageProgressEngine:
    """
    Stage progress and service-lifecycle reconciliation.

    Responsibilities:
        - compute_progress(): pure read of an instance's progress
        - set_stage_status() / set_stage_applicability(): single mutations
        - set_multiple_stage_statuses(): ordered, non-transactional batch
        - reconcile_service_status(): derive and write the instance status
        - update_*(): mutation followed by reconciliation, as the HTTP
          layer uses them
        - sync_stages_from_templates(): provision missing stages

    Error Handling:
        Missing stages or instances raise NotFoundError. Storage failures
        (DatabaseError) propagate untouched; nothing is retried or
        compensated here.
    """

    def __init__(self, store: StageStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    # ── Reads ─────────────────────────────────────────────────────────────

    async def _require_contract_service(self, contract_service_id: int, lock: bool = False):
        _require_id(contract_service_id, "contract_service_id")
        record = await self.store.get_contract_service(contract_service_id, lock=lock)
        if record is None:
            raise NotFoundError(resource="contract service", resource_id=contract_service_id)
        return record

    async def compute_progress(self, contract_service_id: int) -> ProgressSnapshot:
        """
        Progress of one service instance. No side effects.

        Raises:
            NotFoundError: the service instance does not exist
        """
        await self._require_contract_service(contract_service_id)
        stages = await self.store.list_stages(contract_service_id)
        return snapshot_from_stages(contract_service_id, stages)

    async def list_stages(
        self, contract_service_id: int
    ) -> Tuple[List[StageRecord], ProgressSnapshot]:
        """Stages of an instance in checklist order, with the matching snapshot."""
        await self._require_contract_service(contract_service_id)
        stages = await self.store.list_stages(contract_service_id)
        return stages, snapshot_from_stages(contract_service_id, stages)

    # ── Stage mutations ───────────────────────────────────────────────────

    async def set_stage_status(
        self, stage_id: int, status: StageStatus, actor: Optional[int]
    ) -> StageRecord:
        """
        Write a stage's status with actor/timestamp metadata.

        Completing a stage records completed_at/completed_by; reopening it
        clears both.

        Raises:
            ValidationError: non-positive id or unknown status
            NotFoundError: the stage does not exist
        """
        _require_id(stage_id, "stage_id")
        status = _require_status(status)
        now = self._clock()
        completed = status is StageStatus.COMPLETED
        stage = await self.store.update_stage(
            stage_id,
            {
                "status": status.value,
                "completed_at": now if completed else None,
                "completed_by": actor if completed else None,
                "updated_by": actor,
                "updated_at": now,
            },
        )
        if stage is None:
            raise NotFoundError(resource="stage", resource_id=stage_id)
        logger.info("Stage %s marked %s by %s", stage_id, status.value, actor)
        return stage

    async def set_stage_applicability(
        self, stage_id: int, is_not_applicable: bool, actor: Optional[int]
    ) -> StageRecord:
        """
        Flag a stage as (not) applicable.

        Raises:
            NotFoundError: the stage does not exist
        """
        _require_id(stage_id, "stage_id")
        if not isinstance(is_not_applicable, bool):
            raise ValidationError("is_not_applicable must be a boolean", field="is_not_applicable")
        if await self.store.get_stage(stage_id) is None:
            raise NotFoundError(resource="stage", resource_id=stage_id)
        stage = await self.store.update_stage(
            stage_id,
            {
                "is_not_applicable": is_not_applicable,
                "updated_by": actor,
                "updated_at": self._clock(),
            },
        )
        if stage is None:
            raise NotFoundError(resource="stage", resource_id=stage_id)
        logger.info(
            "Stage %s marked %s by %s",
            stage_id,
            "not applicable" if is_not_applicable else "applicable",
            actor,
        )
        return stage

    async def set_multiple_stage_statuses(
        self, updates: Sequence[StageStatusChange], actor: Optional[int]
    ) -> BatchOutcome:
        """
        Apply status updates one by one, in the given order.

        The batch is not transactional: an unknown stage id is recorded as
        a failure and the remaining items are still applied; items already
        applied stay applied. A repeated stage id is applied every time, so
        its last occurrence wins. Storage errors propagate immediately.

        Raises:
            ValidationError: the batch is empty or an item is malformed;
                             checked for every item before anything is written
        """
        if not updates:
            raise ValidationError("updates must be a non-empty list", field="updates")
        for change in updates:
            _require_id(change.stage_id, "id")
            _require_status(change.status)

        outcome = BatchOutcome()
        for change in updates:
            try:
                stage = await self.set_stage_status(change.stage_id, change.status, actor)
            except NotFoundError as e:
                logger.warning("Bulk update skipped stage %s: %s", change.stage_id, e.message)
                outcome.failures.append(
                    BatchFailure(stage_id=change.stage_id, error="not_found", message=e.message)
                )
                continue
            outcome.stages.append(stage)
        return outcome

    # ── Reconciliation ────────────────────────────────────────────────────

    async def reconcile_service_status(self, contract_service_id: int) -> ReconcileResult:
        """
        Derive the instance status from its stages and write it if it changes.

        Rules (evaluated on a fresh snapshot):
            1. 100%                              → completed
            2. 0% < p < 100% and not_started     → in_progress
            3. anything else                     → no write

        Both the instance and its routine are written through the store's
        single lifecycle write path. The instance row is read with a lock so
        concurrent reconciliations of the same instance are serialized.
        A second call without intervening stage changes writes nothing.

        Raises:
            NotFoundError: the service instance does not exist
        """
        service = await self._require_contract_service(contract_service_id, lock=True)
        stages = await self.store.list_stages(contract_service_id)
        progress = snapshot_from_stages(contract_service_id, stages)

        status = service.status
        auto_started = False
        auto_completed = False
        pct = progress.progress_percentage

        if pct == 100:
            if status != ServiceStatus.COMPLETED.value:
                status = ServiceStatus.COMPLETED.value
                auto_completed = True
        elif pct > 0 and status == ServiceStatus.NOT_STARTED.value:
            status = ServiceStatus.IN_PROGRESS.value
            auto_started = True

        if auto_started or auto_completed:
            await self.store.write_lifecycle_status(contract_service_id, status, self._clock())
            logger.info(
                "Contract service %s: %s → %s at %d%% (%d/%d stages)",
                contract_service_id,
                service.status,
                status,
                pct,
                progress.completed_count,
                progress.applicable_count,
            )

        return ReconcileResult(
            contract_service_id=contract_service_id,
            progress=progress,
            status=status,
            auto_started=auto_started,
            auto_completed=auto_completed,
        )

    # ── Mutation + reconciliation ─────────────────────────────────────────

    async def update_stage_status(
        self, stage_id: int, status: StageStatus, actor: Optional[int]
    ) -> StageMutationResult:
        stage = await self.set_stage_status(stage_id, status, actor)
        result = await self.reconcile_service_status(stage.contract_service_id)
        return StageMutationResult(
            stage=stage,
            progress=result.progress,
            auto_started=result.auto_started,
            auto_completed=result.auto_completed,
        )

    async def update_stage_applicability(
        self, stage_id: int, is_not_applicable: bool, actor: Optional[int]
    ) -> StageMutationResult:
        stage = await self.set_stage_applicability(stage_id, is_not_applicable, actor)
        result = await self.reconcile_service_status(stage.contract_service_id)
        return StageMutationResult(
            stage=stage,
            progress=result.progress,
            auto_started=result.auto_started,
            auto_completed=result.auto_completed,
        )

    async def update_multiple_stage_statuses(
        self, updates: Sequence[StageStatusChange], actor: Optional[int]
    ) -> BulkMutationResult:
        """
        Batch update, then one reconciliation per affected instance.

        Instances are reconciled in order of first appearance, after every
        stage update of the batch has been applied.
        Their rows are locked in ascending id order first, so two batches
        touching the same instances cannot lock them in opposite orders.
        """
        outcome = await self.set_multiple_stage_statuses(updates, actor)

        affected = list(dict.fromkeys(stage.contract_service_id for stage in outcome.stages))
        for contract_service_id in sorted(affected):
            await self.store.get_contract_service(contract_service_id, lock=True)

        reconciliations: Dict[int, ReconcileResult] = {}
        for contract_service_id in affected:
            reconciliations[contract_service_id] = await self.reconcile_service_status(
                contract_service_id
            )

        return BulkMutationResult(
            stages=outcome.stages,
            failures=outcome.failures,
            reconciliations=reconciliations,
        )

    # ── Provisioning ──────────────────────────────────────────────────────

    async def sync_stages_from_templates(self, service_id: int) -> Tuple[int, int]:
        """
        Create the missing stages of every instance of a catalogue service.

        New stages start pending and applicable. Running it again creates
        nothing.

        Returns:
            (stages created, service instances examined)
        """
        _require_id(service_id, "service_id")
        templates = await self.store.list_stage_templates(service_id)
        if not templates:
            logger.info("Service %s has no active stage templates; nothing to sync", service_id)
            return 0, 0

        contract_service_ids = await self.store.list_contract_service_ids(service_id)
        created = 0
        now = self._clock()
        for contract_service_id in contract_service_ids:
            existing = await self.store.list_provisioned_template_ids(contract_service_id)
            for template in templates:
                if template.id in existing:
                    continue
                await self.store.create_stage(contract_service_id, template.id, now)
                created += 1

        logger.info(
            "Stage sync for service %s: %d stages created across %d contract services",
            service_id,
            created,
            len(contract_service_ids),
        )
        return created, len(contract_service_ids)
