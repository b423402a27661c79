# Models package init
"""
Stage Tracker Backend — ORM Models
====================================

Importing this package registers every table with Base.metadata, which
Alembic (--autogenerate) and the test suite (create_all) rely on.

Tables:
    - service_stages:           stage templates of a catalogue service
    - contract_services:        a service sold within a contract (service instance)
    - contract_service_stages:  per-instance checklist items
    - service_routines:         routine record mirroring an instance's lifecycle
"""

from app.models.contract_service import ContractService
from app.models.contract_service_stage import ContractServiceStage
from app.models.service_routine import ServiceRoutine
from app.models.service_stage import ServiceStage

__all__ = ["ContractService", "ContractServiceStage", "ServiceRoutine", "ServiceStage"]
