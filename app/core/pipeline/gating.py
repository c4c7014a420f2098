"""Auto-reply gating."""

from datetime import datetime

from app.channels.config import ChannelInstanceConfig
from app.core.intelligence.entities.types import ExtractedEntities
from app.core.intelligence.intent.types import MessageIntent


def should_auto_reply(
    intent: MessageIntent,
    entities: ExtractedEntities,
    config: ChannelInstanceConfig,
    now: datetime,
) -> bool:
    """
    Decide whether a reply should be composed for a message.

    Rules, in order:
    1. Emergencies always get a reply, even outside business hours.
    2. Unknown intent with nothing actionable follows the instance's
       `respond_to_unknown_intent` policy.
    3. With business hours enabled, no reply outside today's window.
    """
    if intent == MessageIntent.EMERGENCY:
        return True

    if intent == MessageIntent.UNKNOWN and not entities.has_actionable():
        if not config.respond_to_unknown_intent:
            return False

    hours = config.business_hours
    if hours.enabled and not hours.is_open(now):
        return False

    return True
