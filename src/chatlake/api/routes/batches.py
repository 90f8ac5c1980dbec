"""
Import batch API routes.

Read-only views of batch state and progress. Imports are started from the CLI.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from chatlake.api.schemas import (
    ImportBatchDetail,
    ImportBatchResponse,
    ParsingFailureResponse,
)
from chatlake.db.connection import get_db
from chatlake.pipeline.failure_tracking import get_failures
from chatlake.pipeline.orchestrator import ImportOrchestrator

router = APIRouter()


@router.get("", response_model=list[ImportBatchResponse])
async def list_batches(
    limit: int = Query(50, ge=1, le=500, description="Maximum batches to return"),
    session: Session = Depends(get_db),
) -> list[ImportBatchResponse]:
    """List import batches, newest first."""
    batches = ImportOrchestrator(session).list_batches(limit=limit)
    return [ImportBatchResponse.model_validate(b) for b in batches]


@router.get("/{batch_id}", response_model=ImportBatchDetail)
async def get_batch(
    batch_id: UUID,
    session: Session = Depends(get_db),
) -> ImportBatchDetail:
    """
    Get one batch with its progress and parsing failures.

    Poll this endpoint to follow an import in progress.
    """
    batch = ImportOrchestrator(session).get_status(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Import batch not found")

    detail = ImportBatchDetail.model_validate(batch)
    detail.failures = [
        ParsingFailureResponse.model_validate(f) for f in get_failures(session, batch.id)
    ]
    return detail
