"""
Project API routes.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from chatlake.api.schemas import DriftMetricResponse, ProjectDriftResponse, ProjectResponse
from chatlake.db.connection import get_db
from chatlake.db.repositories import ProjectRepository
from chatlake.inference.drift import HIGH_DRIFT_THRESHOLD, DriftEngine

router = APIRouter()


@router.get("", response_model=list[ProjectResponse])
async def list_projects(session: Session = Depends(get_db)) -> list[ProjectResponse]:
    return [ProjectResponse.model_validate(p) for p in ProjectRepository(session).list_by_name()]


@router.get("/{project_id}/drift", response_model=ProjectDriftResponse)
async def get_project_drift(
    project_id: UUID,
    session: Session = Depends(get_db),
) -> ProjectDriftResponse:
    """Stored topic drift windows of a project, newest first."""
    project = ProjectRepository(session).get(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")

    windows = DriftEngine(session).get_project_drift(project_id)
    return ProjectDriftResponse(
        project_id=project.id,
        project_name=project.name,
        high_drift_threshold=HIGH_DRIFT_THRESHOLD,
        windows=[DriftMetricResponse.model_validate(w) for w in windows],
    )
