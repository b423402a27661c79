"""
Stage Tracker Backend — Contract Service Stage Route Handlers
===============================================================

What:  Endpoints for reading stage progress and updating stages.
How:   Path ids and bodies are validated by FastAPI/Pydantic before the
       engine runs; handlers delegate to StageProgressEngine and shape the
       JSON response.
Who:   Called by the contract view of the frontend.

Routes:
    GET   /api/contract-services/{id}/stages            stages + progress
    GET   /api/contract-services/{id}/stages/progress   progress only
    PATCH /api/contract-service-stages/{id}/status      mark pending/completed
    PATCH /api/contract-service-stages/{id}/not-applicable
    PATCH /api/contract-service-stages/status/bulk      ordered batch
    POST  /api/services/{service_id}/stages/sync        provision missing stages

Caching:
    Progress reads must never be served stale by a browser or proxy, so both
    GET endpoints send no-store headers.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Response

from app.dependencies import get_actor_id, get_progress_engine
from app.schemas.stage import (
    MAX_ID,
    BulkStageStatusUpdate,
    BulkStageUpdateResponse,
    BulkUpdateFailure,
    ErrorResponse,
    ProgressResponse,
    StageApplicabilityUpdate,
    StageListResponse,
    StageResponse,
    StageStatus,
    StageStatusUpdate,
    StageSyncResponse,
    StageUpdateResponse,
)
from app.services.progress_engine import StageProgressEngine, StageStatusChange

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Stages"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_ERROR_RESPONSES = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    404: {"description": "Stage or contract service not found", "model": ErrorResponse},
    500: {"description": "Server error", "model": ErrorResponse},
}


def _disable_caching(response: Response) -> None:
    for header, value in NO_CACHE_HEADERS.items():
        response.headers[header] = value


@router.get(
    "/contract-services/{contract_service_id}/stages",
    response_model=StageListResponse,
    responses=_ERROR_RESPONSES,
    summary="List the stages of a contract service",
)
async def list_contract_service_stages(
    response: Response,
    contract_service_id: int = Path(gt=0, le=MAX_ID, description="Contract service ID"),
    engine: StageProgressEngine = Depends(get_progress_engine),
) -> StageListResponse:
    """Stages in checklist order together with the current progress snapshot."""
    stages, progress = await engine.list_stages(contract_service_id)
    _disable_caching(response)
    return StageListResponse(
        stages=[StageResponse.model_validate(stage) for stage in stages],
        progress=progress,
    )


@router.get(
    "/contract-services/{contract_service_id}/stages/progress",
    response_model=ProgressResponse,
    responses=_ERROR_RESPONSES,
    summary="Get the progress of a contract service",
)
async def get_contract_service_progress(
    response: Response,
    contract_service_id: int = Path(gt=0, le=MAX_ID, description="Contract service ID"),
    engine: StageProgressEngine = Depends(get_progress_engine),
) -> ProgressResponse:
    progress = await engine.compute_progress(contract_service_id)
    _disable_caching(response)
    return ProgressResponse(progress=progress)


@router.patch(
    "/contract-service-stages/status/bulk",
    response_model=BulkStageUpdateResponse,
    responses=_ERROR_RESPONSES,
    summary="Update the status of several stages",
)
async def update_multiple_stage_statuses(
    body: BulkStageStatusUpdate,
    engine: StageProgressEngine = Depends(get_progress_engine),
    actor_id: Optional[int] = Depends(get_actor_id),
) -> BulkStageUpdateResponse:
    """
    Apply an ordered batch of status updates.

    Each contract service touched by the batch is reconciled once, after
    all updates are applied. Unknown stage ids are reported in `failed`
    without undoing the other updates.
    """
    result = await engine.update_multiple_stage_statuses(
        [StageStatusChange(stage_id=item.id, status=item.status) for item in body.updates],
        actor_id,
    )

    message = "Stages updated successfully"
    if result.failures:
        message = f"{len(result.stages)} stage(s) updated, {len(result.failures)} failed"

    return BulkStageUpdateResponse(
        message=message,
        stages=[StageResponse.model_validate(stage) for stage in result.stages],
        failed=[
            BulkUpdateFailure(id=f.stage_id, error=f.error, message=f.message)
            for f in result.failures
        ],
        progress_by_service={
            cs_id: r.progress for cs_id, r in result.reconciliations.items()
        },
        auto_started_services=result.auto_started_services,
        auto_completed_services=result.auto_completed_services,
    )


@router.patch(
    "/contract-service-stages/{stage_id}/status",
    response_model=StageUpdateResponse,
    responses=_ERROR_RESPONSES,
    summary="Mark a stage as pending or completed",
)
async def update_stage_status(
    body: StageStatusUpdate,
    stage_id: int = Path(gt=0, le=MAX_ID, description="Stage ID"),
    engine: StageProgressEngine = Depends(get_progress_engine),
    actor_id: Optional[int] = Depends(get_actor_id),
) -> StageUpdateResponse:
    result = await engine.update_stage_status(stage_id, body.status, actor_id)
    label = "completed" if body.status is StageStatus.COMPLETED else "pending"
    return StageUpdateResponse(
        message=f"Stage marked as {label}",
        stage=StageResponse.model_validate(result.stage),
        progress=result.progress,
        service_auto_started=result.auto_started,
        service_auto_completed=result.auto_completed,
    )


@router.patch(
    "/contract-service-stages/{stage_id}/not-applicable",
    response_model=StageUpdateResponse,
    responses=_ERROR_RESPONSES,
    summary="Mark a stage as (not) applicable",
)
async def update_stage_applicability(
    body: StageApplicabilityUpdate,
    stage_id: int = Path(gt=0, le=MAX_ID, description="Stage ID"),
    engine: StageProgressEngine = Depends(get_progress_engine),
    actor_id: Optional[int] = Depends(get_actor_id),
) -> StageUpdateResponse:
    result = await engine.update_stage_applicability(stage_id, body.is_not_applicable, actor_id)
    label = "not applicable" if body.is_not_applicable else "applicable"
    return StageUpdateResponse(
        message=f"Stage marked as {label}",
        stage=StageResponse.model_validate(result.stage),
        progress=result.progress,
        service_auto_started=result.auto_started,
        service_auto_completed=result.auto_completed,
    )


@router.post(
    "/services/{service_id}/stages/sync",
    response_model=StageSyncResponse,
    responses=_ERROR_RESPONSES,
    summary="Provision missing stages from a service's templates",
)
async def sync_service_stages(
    service_id: int = Path(gt=0, le=MAX_ID, description="Catalogue service ID"),
    engine: StageProgressEngine = Depends(get_progress_engine),
) -> StageSyncResponse:
    created, contract_services = await engine.sync_stages_from_templates(service_id)
    return StageSyncResponse(
        service_id=service_id,
        created=created,
        contract_services=contract_services,
    )
