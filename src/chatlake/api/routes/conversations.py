"""
Conversation API routes.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from chatlake.api.schemas import SimilarConversationResponse
from chatlake.db.connection import get_db
from chatlake.exceptions import NotFoundError
from chatlake.inference.similarity import SimilarityEngine

router = APIRouter()


@router.get("/{conversation_id}/similar", response_model=list[SimilarConversationResponse])
async def get_similar_conversations(
    conversation_id: UUID,
    limit: int = Query(10, ge=1, le=100, description="Maximum results"),
    session: Session = Depends(get_db),
) -> list[SimilarConversationResponse]:
    """
    Conversations most similar to the given one.

    Uses the latest similarity run, or a live comparison when the
    conversation has no stored edges.
    """
    try:
        results = SimilarityEngine(session).find_similar(conversation_id, limit=limit)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return [SimilarConversationResponse.model_validate(r) for r in results]
