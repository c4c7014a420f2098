"""
Booking bridge module.

Connects the conversation pipeline to the external Appointment Service.
"""

from .types import (
    Appointment,
    AppointmentQuery,
    AvailableSlot,
    BookingRequest,
    BookingResult,
    BookingStep,
)
from .client import AppointmentService, AppointmentServiceClient
from .bridge import BookingBridge

__all__ = [
    # Types
    "Appointment",
    "AppointmentQuery",
    "AvailableSlot",
    "BookingRequest",
    "BookingResult",
    "BookingStep",
    # Service
    "AppointmentService",
    "AppointmentServiceClient",
    # Bridge
    "BookingBridge",
]
