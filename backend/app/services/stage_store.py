"""
Stage Tracker Backend — Abstract Stage Store Interface
========================================================

What:  Abstract base class defining the persistence contract the progress
       engine depends on, plus the plain records it exchanges.
How:   SQLStageStore implements it on an async SQLAlchemy session; the test
       suite implements it in memory. The engine never touches a database
       client directly.

Contract:
    - Reads return None (single row) or an empty list when nothing matches;
      they never raise for "not found".
    - Storage failures surface as DatabaseError.
    - write_lifecycle_status is the single write path for the mirrored
      status of a service instance and its routine: both rows change in the
      same unit of work, or neither does.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set


@dataclass
class StageRecord:
    """A stage flattened with the fields of its template."""

    id: int
    contract_service_id: int
    service_stage_id: int
    name: str
    status: str
    is_not_applicable: bool
    sort_order: int = 0
    description: Optional[str] = None
    category: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass
class ContractServiceRecord:
    id: int
    service_id: int
    status: str
    updated_at: Optional[datetime] = None


@dataclass
class StageTemplateRecord:
    id: int
    service_id: int
    name: str
    sort_order: int = 0
    is_active: bool = True


class StageStore(ABC):
    """
    Persistence port for stages and the lifecycle rows derived from them.

    Implementations:
        - SQLStageStore: async SQLAlchemy session (production)
        - InMemoryStageStore: dict-backed fake (tests)
    """

    # ── Stages ────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_stage(self, stage_id: int) -> Optional[StageRecord]:
        ...

    @abstractmethod
    async def list_stages(self, contract_service_id: int) -> List[StageRecord]:
        """All stages of an instance ordered by template sort_order, then id."""
        ...

    @abstractmethod
    async def update_stage(
        self, stage_id: int, changes: Dict[str, Any]
    ) -> Optional[StageRecord]:
        """
        Apply column changes to one stage.

        Returns:
            The updated stage, or None when the stage does not exist.
        """
        ...

    # ── Service instance / routine ────────────────────────────────────────

    @abstractmethod
    async def get_contract_service(
        self, contract_service_id: int, lock: bool = False
    ) -> Optional[ContractServiceRecord]:
        """
        Read a service instance.

        Args:
            lock: Hold a row lock until the surrounding transaction ends, so
                  concurrent reconciliations of the same instance run one
                  after the other.
        """
        ...

    @abstractmethod
    async def write_lifecycle_status(
        self, contract_service_id: int, status: str, at: datetime
    ) -> None:
        """Set the status of the instance and of its routine (if any) together."""
        ...

    # ── Provisioning ──────────────────────────────────────────────────────

    @abstractmethod
    async def list_stage_templates(self, service_id: int) -> List[StageTemplateRecord]:
        """Active templates of a catalogue service ordered by sort_order."""
        ...

    @abstractmethod
    async def list_contract_service_ids(self, service_id: int) -> List[int]:
        ...

    @abstractmethod
    async def list_provisioned_template_ids(self, contract_service_id: int) -> Set[int]:
        """Template ids that already have a stage row for this instance."""
        ...

    @abstractmethod
    async def create_stage(
        self, contract_service_id: int, service_stage_id: int, at: datetime
    ) -> None:
        """Insert a pending, applicable stage for the given template."""
        ...
