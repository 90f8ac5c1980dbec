"""
Project suggestion review API routes.

Only pending suggestions can be accepted, rejected or merged; acting on any
other suggestion returns 409 Conflict.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from chatlake.api.schemas import (
    MergeRequest,
    ProjectResponse,
    SuggestedConversationResponse,
    SuggestionActionResponse,
    SuggestionResponse,
)
from chatlake.db.connection import get_db
from chatlake.exceptions import NotFoundError, SuggestionStateError
from chatlake.inference.suggestions import SuggestionService
from chatlake.models.db import SuggestionStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[SuggestionResponse])
async def list_suggestions(
    status: SuggestionStatus = Query(
        SuggestionStatus.PENDING, description="Filter by review status"
    ),
    session: Session = Depends(get_db),
) -> list[SuggestionResponse]:
    """List suggestions with the given status, highest confidence first."""
    suggestions = SuggestionService(session).list_by_status(status)
    return [SuggestionResponse.model_validate(s) for s in suggestions]


@router.get("/{suggestion_id}/conversations", response_model=list[SuggestedConversationResponse])
async def get_suggestion_conversations(
    suggestion_id: UUID,
    session: Session = Depends(get_db),
) -> list[SuggestedConversationResponse]:
    """Preview the conversations a suggestion would group."""
    try:
        previews = SuggestionService(session).get_suggestion_conversations(suggestion_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return [SuggestedConversationResponse.model_validate(p) for p in previews]


def _conflict(e: SuggestionStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


@router.post("/{suggestion_id}/accept", response_model=SuggestionActionResponse)
async def accept_suggestion(
    suggestion_id: UUID,
    session: Session = Depends(get_db),
) -> SuggestionActionResponse:
    """Accept a suggestion, creating a project from its conversations."""
    service = SuggestionService(session)
    try:
        project = service.accept(suggestion_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    except SuggestionStateError as e:
        raise _conflict(e)
    session.commit()
    return SuggestionActionResponse(
        suggestion=SuggestionResponse.model_validate(service.get(suggestion_id)),
        project=ProjectResponse.model_validate(project),
    )


@router.post("/{suggestion_id}/reject", response_model=SuggestionActionResponse)
async def reject_suggestion(
    suggestion_id: UUID,
    session: Session = Depends(get_db),
) -> SuggestionActionResponse:
    try:
        suggestion = SuggestionService(session).reject(suggestion_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    except SuggestionStateError as e:
        raise _conflict(e)
    session.commit()
    return SuggestionActionResponse(suggestion=SuggestionResponse.model_validate(suggestion))


@router.post("/{suggestion_id}/merge", response_model=SuggestionActionResponse)
async def merge_suggestion(
    suggestion_id: UUID,
    request: MergeRequest,
    session: Session = Depends(get_db),
) -> SuggestionActionResponse:
    """Merge a suggestion's conversations into an existing project."""
    service = SuggestionService(session)
    try:
        project = service.merge(suggestion_id, request.target_project_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SuggestionStateError as e:
        raise _conflict(e)
    session.commit()
    return SuggestionActionResponse(
        suggestion=SuggestionResponse.model_validate(service.get(suggestion_id)),
        project=ProjectResponse.model_validate(project),
    )
