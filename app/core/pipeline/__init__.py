"""
Conversation pipeline module.

Usage:
    from app.core.pipeline import ConversationPipeline

    pipeline = ConversationPipeline(
        store=store,
        audit_logger=audit,
        classifier=classifier,
        extractor=extractor,
        composer=composer,
    )
    result = await pipeline.process(message, instance, adapter)
"""

from .stages import (
    STAGE_BY_INTENT,
    calculate_confidence,
    compute_stage,
    determine_next_actions,
    resolve_stage,
)
from .gating import should_auto_reply
from .response import ComposedResponse, ResponseComposer
from .engine import ConversationPipeline, ProcessingResult, validate_message

__all__ = [
    # Stages
    "STAGE_BY_INTENT",
    "calculate_confidence",
    "compute_stage",
    "determine_next_actions",
    "resolve_stage",
    # Gating
    "should_auto_reply",
    # Response
    "ComposedResponse",
    "ResponseComposer",
    # Engine
    "ConversationPipeline",
    "ProcessingResult",
    "validate_message",
]
