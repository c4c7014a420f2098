"""Entity types extracted from patient messages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Urgency(str, Enum):
    """How soon the patient needs attention."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


@dataclass
class PatientInfo:
    """Patient details volunteered in a message."""

    name: Optional[str] = None
    id_number: Optional[str] = None
    phone: Optional[str] = None

    def has_any(self) -> bool:
        return any([self.name, self.id_number, self.phone])

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        return {
            key: value
            for key, value in (
                ("name", self.name),
                ("id_number", self.id_number),
                ("phone", self.phone),
            )
            if value
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PatientInfo":
        return cls(
            name=data.get("name") or None,
            id_number=data.get("id_number") or None,
            phone=data.get("phone") or None,
        )


@dataclass
class ExtractedEntities:
    """Structured fields extracted from free text."""

    specialty: Optional[str] = None
    date: Optional[str] = None           # "2024-02-01" or raw expression
    time: Optional[str] = None           # "14:30" or raw expression
    doctor_name: Optional[str] = None
    urgency: Optional[Urgency] = None
    symptoms: list[str] = field(default_factory=list)
    patient_info: Optional[PatientInfo] = None

    def field_count(self) -> int:
        """Number of non-empty fields."""
        values: list[Any] = [
            self.specialty,
            self.date,
            self.time,
            self.doctor_name,
            self.urgency,
            self.symptoms,
            self.patient_info.has_any() if self.patient_info else None,
        ]
        return sum(1 for value in values if value)

    def has_actionable(self) -> bool:
        """Check if anything the pipeline can act on was extracted."""
        return any([
            self.specialty,
            self.date,
            self.time,
            self.doctor_name,
            self.symptoms,
            self.urgency,
        ])

    def to_dict(self) -> dict:
        """Convert to dict, excluding empty values."""
        result: dict[str, Any] = {}
        if self.specialty:
            result["specialty"] = self.specialty
        if self.date:
            result["date"] = self.date
        if self.time:
            result["time"] = self.time
        if self.doctor_name:
            result["doctor_name"] = self.doctor_name
        if self.urgency:
            result["urgency"] = self.urgency.value
        if self.symptoms:
            result["symptoms"] = list(self.symptoms)
        if self.patient_info and self.patient_info.has_any():
            result["patient_info"] = self.patient_info.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ExtractedEntities":
        """Build from a loosely-shaped dict (LLM output or stored JSON)."""
        if not data:
            return cls()

        urgency = None
        if data.get("urgency"):
            try:
                urgency = Urgency(str(data["urgency"]).lower())
            except ValueError:
                urgency = None

        symptoms = data.get("symptoms") or []
        if isinstance(symptoms, str):
            symptoms = [symptoms]

        patient_info = None
        if isinstance(data.get("patient_info"), dict):
            patient_info = PatientInfo.from_dict(data["patient_info"])

        return cls(
            specialty=data.get("specialty") or None,
            date=data.get("date") or None,
            time=data.get("time") or None,
            doctor_name=data.get("doctor_name") or None,
            urgency=urgency,
            symptoms=[str(s) for s in symptoms if s],
            patient_info=patient_info,
        )
