"""Booking bridge types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from app.channels.types import ChannelType
from app.core.intelligence.entities.types import Urgency

ACTIVE_APPOINTMENT_STATUSES = ["scheduled", "confirmed", "pending"]


class BookingStep(str, Enum):
    """What the patient has to do next in the booking dialogue."""

    PROVIDE_SPECIALTY = "provide_specialty"
    PROVIDE_DATE = "provide_date"
    CONFIRM_SLOT = "confirm_slot"
    SUGGEST_ALTERNATIVES = "suggest_alternatives"
    PROVIDE_PATIENT_INFO = "provide_patient_info"


@dataclass
class BookingRequest:
    """Booking-shaped intent translated from conversational entities."""

    channel_type: ChannelType
    conversation_id: str
    specialty: str = ""
    preferred_date: str = ""
    patient_id: Optional[str] = None
    preferred_time: Optional[str] = None
    urgency: Urgency = Urgency.LOW
    symptoms: list[str] = field(default_factory=list)
    notes: Optional[str] = None


@dataclass
class AppointmentQuery:
    """Lookup of a patient's existing appointments."""

    channel_type: ChannelType
    conversation_id: str
    patient_id: Optional[str] = None
    appointment_id: Optional[str] = None
    status: list[str] = field(default_factory=lambda: list(ACTIVE_APPOINTMENT_STATUSES))


@dataclass
class AvailableSlot:
    """Open slot returned by the appointment service."""

    doctor_id: str
    date: str             # YYYY-MM-DD
    start_time: str       # HH:MM
    doctor_name: Optional[str] = None
    specialty: Optional[str] = None
    end_time: Optional[str] = None
    service_id: Optional[str] = None
    location_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "AvailableSlot":
        """Create from API response dict."""
        return cls(
            doctor_id=str(data.get("doctor_id", "")),
            date=data.get("date", data.get("appointment_date", "")),
            start_time=data.get("start_time", data.get("time", "")),
            doctor_name=data.get("doctor_name"),
            specialty=data.get("specialty", data.get("specialization")),
            end_time=data.get("end_time"),
            service_id=data.get("service_id"),
            location_id=data.get("location_id"),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "doctor_id": self.doctor_id,
            "date": self.date,
            "start_time": self.start_time,
            "doctor_name": self.doctor_name,
            "specialty": self.specialty,
            "end_time": self.end_time,
            "service_id": self.service_id,
            "location_id": self.location_id,
        }


@dataclass
class Appointment:
    """Existing appointment as listed to the patient."""

    id: str
    date: str
    start_time: str
    status: str
    doctor_name: Optional[str] = None
    service_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Appointment":
        """Create from API response dict."""
        return cls(
            id=str(data.get("id", "")),
            date=data.get("appointment_date", data.get("date", "")),
            start_time=data.get("start_time", ""),
            status=data.get("status", ""),
            doctor_name=data.get("doctor_name"),
            service_name=data.get("service_name"),
        )


@dataclass
class BookingResult:
    """Outcome of a booking bridge call, with the text for the patient."""

    success: bool
    message: str
    available_slots: Optional[list[AvailableSlot]] = None
    next_step: Optional[BookingStep] = None
    appointment_id: Optional[str] = None

    # Internal only, never shown to the patient
    error: Optional[str] = None

    @property
    def is_service_failure(self) -> bool:
        """True when the appointment service itself failed."""
        return not self.success and self.error is not None

    def to_dict(self) -> dict:
        result: dict = {"success": self.success, "message": self.message}
        if self.available_slots is not None:
            result["available_slots"] = [s.to_dict() for s in self.available_slots]
        if self.next_step:
            result["next_step"] = self.next_step.value
        if self.appointment_id:
            result["appointment_id"] = self.appointment_id
        return result
