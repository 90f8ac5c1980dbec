"""
Inference run API routes.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from chatlake.api.schemas import InferenceRunResponse
from chatlake.db.connection import get_db
from chatlake.inference.runs import RunTracker
from chatlake.models.db import RunType

router = APIRouter()


@router.get("", response_model=list[InferenceRunResponse])
async def list_runs(
    run_type: Optional[RunType] = Query(None, description="Filter by run type"),
    limit: int = Query(20, ge=1, le=200, description="Maximum runs to return"),
    session: Session = Depends(get_db),
) -> list[InferenceRunResponse]:
    """List inference runs, newest first."""
    runs = RunTracker(session).get_recent_runs(run_type=run_type, limit=limit)
    return [InferenceRunResponse.model_validate(r) for r in runs]


@router.get("/{run_id}", response_model=InferenceRunResponse)
async def get_run(
    run_id: UUID,
    session: Session = Depends(get_db),
) -> InferenceRunResponse:
    run = RunTracker(session).get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Inference run not found")
    return InferenceRunResponse.model_validate(run)
