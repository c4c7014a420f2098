"""
Webhook Ingestion Endpoint.

Receives provider deliveries for one channel instance and runs them
through the conversation pipeline.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Request, status
from pydantic import BaseModel, Field

from app.api.dependencies import (
    get_adapter_registry,
    get_instance_repository,
    get_pipeline,
)
from app.api.security import SIGNATURE_HEADER, is_webhook_authorized
from app.channels.adapter import AdapterRegistry
from app.channels.repository import ChannelInstanceRepository
from app.channels.types import ChannelType
from app.core.errors import AdapterNotFoundError, ValidationError
from app.core.pipeline.engine import ConversationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


class WebhookPayload(BaseModel):
    """Provider webhook envelope."""

    event: str = Field(
        ...,
        min_length=1,
        description="Provider event name",
        examples=["messages.upsert"],
    )
    instance: Optional[str] = Field(
        default=None,
        description="Provider-side instance name",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, interpreted by the channel adapter",
    )


@router.post(
    "/{channel_type}/{instance_id}",
    status_code=status.HTTP_200_OK,
    summary="Receive a channel webhook",
    responses={
        401: {"description": "Missing or invalid webhook signature"},
        404: {"description": "Unknown instance or unsupported channel"},
    },
)
async def receive_webhook(
    channel_type: str,
    instance_id: str,
    payload: WebhookPayload,
    request: Request,
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    pipeline: ConversationPipeline = Depends(get_pipeline),
    adapters: AdapterRegistry = Depends(get_adapter_registry),
    instances: ChannelInstanceRepository = Depends(get_instance_repository),
) -> dict:
    """
    Process one webhook delivery.

    Every processed delivery is acknowledged with 200, including failures
    and duplicates, so the provider does not retry it.
    """
    try:
        channel = ChannelType(channel_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unsupported channel: {channel_type}",
        )

    instance = await instances.get(instance_id)
    if instance is None or instance.channel_type != channel:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Channel instance not found",
        )

    body = await request.body()
    if not is_webhook_authorized(instance, body, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        adapter = adapters.create(instance)
    except AdapterNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No adapter registered for channel {channel.value}",
        )

    try:
        message = adapter.parse_incoming_message(payload.model_dump())
    except ValidationError as e:
        logger.info(f"Ignoring {payload.event} delivery for {instance_id}: {e}")
        return {"status": "ignored", "reason": str(e)}

    result = await pipeline.process(message, instance, adapter)

    logger.info(
        f"Webhook {payload.event} for {instance_id}: message={message.id} "
        f"success={result.success} duplicate={result.duplicate}"
    )

    return {"status": "processed", **result.to_dict()}
