"""
Stage Tracker Backend — Pydantic Request/Response Schemas
===========================================================

What:  Pydantic models defining the API contract for stages and progress.
How:   FastAPI validates request bodies against these models (rejecting bad
       input before the engine runs), serializes responses, and generates
       OpenAPI docs from them.

Validation rules enforced here:
    - status must be exactly "pending" or "completed"
    - is_not_applicable must be a JSON boolean (no "true"/1 coercion)
    - a bulk body must contain at least one {id, status} item with id > 0
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, StrictBool

# Ids are INTEGER (int4) columns
MAX_ID = 2_147_483_647


class StageStatus(str, Enum):
    """Completion state of a single stage."""

    PENDING = "pending"
    COMPLETED = "completed"


class ServiceStatus(str, Enum):
    """Lifecycle values of a service instance that the engine writes."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class StageStatusUpdate(BaseModel):
    """Body of PATCH /api/contract-service-stages/{id}/status."""

    status: StageStatus = Field(description="New stage status: pending or completed")


class StageApplicabilityUpdate(BaseModel):
    """Body of PATCH /api/contract-service-stages/{id}/not-applicable."""

    is_not_applicable: StrictBool = Field(
        description="True excludes the stage from progress calculation"
    )


class BulkStageStatusItem(BaseModel):
    id: int = Field(gt=0, le=MAX_ID, description="Stage ID")
    status: StageStatus


class BulkStageStatusUpdate(BaseModel):
    """
    Body of PATCH /api/contract-service-stages/status/bulk.

    Items are applied in the order given. The same stage may appear more
    than once; the last occurrence wins.
    """

    updates: List[BulkStageStatusItem] = Field(
        min_length=1,
        description="Ordered list of {id, status} updates",
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class StageResponse(BaseModel):
    """A stage of a service instance, flattened with its template fields."""

    id: int
    contract_service_id: int
    service_stage_id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sort_order: int = 0
    status: StageStatus
    is_not_applicable: bool
    completed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProgressSnapshot(BaseModel):
    """
    Computed progress of one service instance. Never persisted.

    progress_percentage is 0 when no stage is applicable.
    """

    contract_service_id: int
    completed_count: int = Field(ge=0, description="Applicable stages marked completed")
    applicable_count: int = Field(ge=0, description="Stages not flagged not-applicable")
    total_count: int = Field(ge=0, description="All stages, including not-applicable ones")
    progress_percentage: int = Field(ge=0, le=100)


class ReconcileResult(BaseModel):
    """Outcome of deriving a service instance's status from its stages."""

    contract_service_id: int
    progress: ProgressSnapshot
    status: str = Field(description="Instance status after reconciliation")
    auto_started: bool = False
    auto_completed: bool = False


class StageListResponse(BaseModel):
    stages: List[StageResponse]
    progress: ProgressSnapshot


class ProgressResponse(BaseModel):
    progress: ProgressSnapshot


class StageUpdateResponse(BaseModel):
    """Result of a single stage mutation followed by reconciliation."""

    message: str
    stage: StageResponse
    progress: ProgressSnapshot
    service_auto_started: bool = False
    service_auto_completed: bool = False


class BulkUpdateFailure(BaseModel):
    id: int
    error: str
    message: str


class BulkStageUpdateResponse(BaseModel):
    """
    Result of a bulk status update.

    stages holds the successfully updated stages in request order; failed
    lists items that could not be applied (e.g. unknown stage id). Items
    that succeeded stay applied.
    """

    message: str
    stages: List[StageResponse]
    failed: List[BulkUpdateFailure] = Field(default_factory=list)
    progress_by_service: Dict[int, ProgressSnapshot] = Field(default_factory=dict)
    auto_started_services: List[int] = Field(default_factory=list)
    auto_completed_services: List[int] = Field(default_factory=list)


class StageSyncResponse(BaseModel):
    """Result of provisioning stages from a service's templates."""

    service_id: int
    created: int = Field(description="Stage rows created")
    contract_services: int = Field(description="Service instances examined")


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "not_found",
            "message": "stage with ID '42' was not found",
            "request_id": "1a2b3c4d"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
