"""
Conversation stage machine.

The stage is recomputed from (intent, entities) on every message, so the
same inputs always give the same stage regardless of where the
conversation was before. The only history-aware rule lives in
`resolve_stage`: an escalated emergency stays escalated until staff reset it.
"""

from app.core.conversation.models import ConversationStage, NextAction
from app.core.intelligence.entities.types import ExtractedEntities
from app.core.intelligence.intent.types import MessageIntent

# Stage for every intent that does not depend on entities.
# Booking is decided by `_booking_stage`.
STAGE_BY_INTENT: dict[MessageIntent, ConversationStage] = {
    MessageIntent.APPOINTMENT_BOOKING: ConversationStage.BOOKING_SPECIALTY_NEEDED,
    MessageIntent.APPOINTMENT_INQUIRY: ConversationStage.INQUIRY_PROCESSING,
    MessageIntent.APPOINTMENT_RESCHEDULE: ConversationStage.PROCESSING,
    MessageIntent.APPOINTMENT_CANCEL: ConversationStage.PROCESSING,
    MessageIntent.GENERAL_INQUIRY: ConversationStage.PROCESSING,
    MessageIntent.EMERGENCY: ConversationStage.EMERGENCY_ESCALATED,
    MessageIntent.GREETING: ConversationStage.GREETING_RESPONDED,
    MessageIntent.UNKNOWN: ConversationStage.PROCESSING,
}

BASE_CONFIDENCE = 0.5
INTENT_BONUS = 0.3
ENTITY_BONUS_PER_FIELD = 0.1
MAX_ENTITY_BONUS = 0.2


def _booking_stage(entities: ExtractedEntities) -> ConversationStage:
    if entities.specialty and entities.date:
        return ConversationStage.BOOKING_READY
    if entities.specialty:
        return ConversationStage.BOOKING_DATE_NEEDED
    return ConversationStage.BOOKING_SPECIALTY_NEEDED


def compute_stage(intent: MessageIntent, entities: ExtractedEntities) -> ConversationStage:
    """Stage for an (intent, entities) pair."""
    if intent == MessageIntent.APPOINTMENT_BOOKING:
        return _booking_stage(entities)
    return STAGE_BY_INTENT[intent]


def resolve_stage(
    previous: ConversationStage,
    computed: ConversationStage,
) -> ConversationStage:
    """Stage to store, keeping an escalated emergency sticky."""
    if previous == ConversationStage.EMERGENCY_ESCALATED:
        return ConversationStage.EMERGENCY_ESCALATED
    return computed


def calculate_confidence(intent: MessageIntent, entities: ExtractedEntities) -> float:
    """
    Confidence of the pipeline's reading of a message.

    0.5 base, +0.3 for a recognized intent, +0.1 per extracted field
    (at most +0.2), clamped to [0, 1].
    """
    confidence = BASE_CONFIDENCE
    if intent != MessageIntent.UNKNOWN:
        confidence += INTENT_BONUS
    confidence += min(ENTITY_BONUS_PER_FIELD * entities.field_count(), MAX_ENTITY_BONUS)
    return round(max(0.0, min(confidence, 1.0)), 4)


def determine_next_actions(
    intent: MessageIntent,
    entities: ExtractedEntities,
) -> list[NextAction]:
    """Follow-up actions for an (intent, entities) pair."""
    if intent == MessageIntent.APPOINTMENT_BOOKING:
        actions = []
        if not entities.specialty:
            actions.append(NextAction.REQUEST_SPECIALTY)
        if not entities.date:
            actions.append(NextAction.REQUEST_DATE)
        if entities.specialty and entities.date:
            actions.append(NextAction.CHECK_AVAILABILITY)
        return actions

    if intent == MessageIntent.EMERGENCY:
        return [NextAction.ESCALATE_TO_HUMAN, NextAction.PROVIDE_EMERGENCY_INFO]

    if intent == MessageIntent.APPOINTMENT_INQUIRY:
        return [NextAction.FETCH_APPOINTMENTS]

    return [NextAction.CONTINUE_CONVERSATION]
