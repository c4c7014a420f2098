"""Intent types for conversation classification."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MessageIntent(str, Enum):
    """Patient intent categories (closed set)."""

    # Appointment actions
    APPOINTMENT_BOOKING = "appointment_booking"        # Book new appointment
    APPOINTMENT_INQUIRY = "appointment_inquiry"        # View upcoming appointments
    APPOINTMENT_RESCHEDULE = "appointment_reschedule"  # Change existing
    APPOINTMENT_CANCEL = "appointment_cancel"          # Cancel existing

    # Other
    GENERAL_INQUIRY = "general_inquiry"  # Hours, location, insurance questions
    EMERGENCY = "emergency"              # Urgent medical situation
    GREETING = "greeting"                # Hello, hi

    # Fallback
    UNKNOWN = "unknown"


@dataclass
class IntentResult:
    """Result of intent classification."""

    intent: MessageIntent
    confidence: float  # 0.0 - 1.0

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    # Whether fallback model was used
    fallback_used: bool = False

    # Processing time
    processing_time_ms: float = 0.0

    @property
    def is_booking_related(self) -> bool:
        """Check if intent is related to appointments."""
        return self.intent in {
            MessageIntent.APPOINTMENT_BOOKING,
            MessageIntent.APPOINTMENT_INQUIRY,
            MessageIntent.APPOINTMENT_RESCHEDULE,
            MessageIntent.APPOINTMENT_CANCEL,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "fallback_used": self.fallback_used,
            "processing_time_ms": self.processing_time_ms,
        }
