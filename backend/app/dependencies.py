"""
Stage Tracker Backend — Dependency Wiring (Composition Root)
==============================================================

What:  FastAPI dependencies that assemble the request-scoped object graph:
       AsyncSession → SQLStageStore → StageProgressEngine.
How:   Route handlers depend on get_progress_engine only. Tests replace
       get_stage_store through app.dependency_overrides to run the real
       engine against an in-memory store.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.stage import MAX_ID
from app.services.progress_engine import StageProgressEngine
from app.services.sql_stage_store import SQLStageStore
from app.services.stage_store import StageStore


async def get_stage_store(db: AsyncSession = Depends(get_db_session)) -> StageStore:
    return SQLStageStore(db)


async def get_progress_engine(
    store: StageStore = Depends(get_stage_store),
) -> StageProgressEngine:
    return StageProgressEngine(store)


async def get_actor_id(
    x_user_id: Optional[int] = Header(
        default=None,
        gt=0,
        le=MAX_ID,
        description="ID of the user performing the change (set by the auth layer)",
    ),
) -> Optional[int]:
    """Acting user for updated_by/completed_by. Authentication happens upstream."""
    return x_user_id
