"""
Conversation Administration Endpoints.

Staff operations on stored conversations.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Header, status
from pydantic import BaseModel, Field

from app.api.dependencies import (
    get_conversation_store,
    get_instance_repository,
    get_pipeline,
)
from app.channels.repository import ChannelInstanceRepository
from app.core.conversation.store import ConversationStore
from app.core.pipeline.engine import ConversationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


class ContextResetResponse(BaseModel):
    """Result of an AI context reset."""

    conversation_id: str
    stage: str = Field(..., description="Conversation stage after the reset")
    reset_by: str


@router.delete(
    "/{conversation_id}/context",
    response_model=ContextResetResponse,
    summary="Reset the AI context of a conversation",
    responses={404: {"description": "Conversation not found"}},
)
async def reset_conversation_context(
    conversation_id: str,
    actor_id: str = Header(..., alias="X-Actor-ID", min_length=1),
    pipeline: ConversationPipeline = Depends(get_pipeline),
    conversations: ConversationStore = Depends(get_conversation_store),
    instances: ChannelInstanceRepository = Depends(get_instance_repository),
) -> ContextResetResponse:
    """
    Reset a conversation to the initial stage.

    This is how staff release a conversation held in emergency escalation.
    """
    conversation = await conversations.get(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )

    instance = await instances.get(conversation.instance_id)
    if instance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Channel instance not found",
        )

    reset = await pipeline.reset_context(conversation_id, instance, actor_id)
    if reset is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )

    return ContextResetResponse(
        conversation_id=reset.id,
        stage=reset.ai_context.conversation_stage.value,
        reset_by=actor_id,
    )
