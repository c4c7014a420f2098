"""
HTTP client for the Appointment Service.

The Appointment Service runs separately and exposes a REST API for:
- Searching availability
- Creating appointments
- Listing a patient's appointments
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, TypeVar

import httpx

from app.config import get_settings
from app.core.errors import BookingError
from .types import Appointment, AvailableSlot

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _parse_items(data, keys: tuple[str, ...], factory: Callable[[dict], T], path: str) -> list[T]:
    """
    Map a list body (bare, or under one of `keys`) to model objects.

    Raises:
        BookingError: If the body does not have that shape
    """
    items = data
    if isinstance(data, dict):
        items = next((data[key] for key in keys if key in data), [])
    if items is None:
        items = []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise BookingError(f"Unexpected response shape from appointment service on {path}")
    try:
        return [factory(item) for item in items]
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise BookingError(f"Invalid item in appointment service response on {path}: {e}") from e


class AppointmentService(ABC):
    """Contract of the external appointment/availability service."""

    @abstractmethod
    async def find_available_slots(
        self,
        organization_id: str,
        specialty: str,
        date: str,
        time: Optional[str] = None,
        urgency: Optional[str] = None,
        limit: int = 5,
    ) -> list[AvailableSlot]:
        """Search open slots. Raises BookingError on failure."""

    @abstractmethod
    async def create_appointment(
        self,
        organization_id: str,
        patient_id: str,
        slot: AvailableSlot,
        notes: Optional[str] = None,
    ) -> str:
        """Book a slot and return the new appointment id. Raises BookingError."""

    @abstractmethod
    async def list_appointments(
        self,
        organization_id: str,
        patient_id: str,
        statuses: list[str],
        limit: int = 5,
    ) -> list[Appointment]:
        """A patient's appointments, soonest first. Raises BookingError."""


class AppointmentServiceClient(AppointmentService):
    """
    HTTP client for the Appointment Service API.

    Appointment Service exposes:
    - POST /api/availability/search - Find available slots
    - POST /api/appointments - Create appointment
    - GET /api/appointments - List a patient's appointments
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: Appointment Service base URL (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
            transport: Custom httpx transport (for testing)
        """
        settings = get_settings()
        self.base_url = base_url or settings.appointment_service_url
        self.timeout = timeout or settings.booking_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        organization_id: str,
        **kwargs,
    ) -> dict | list:
        """Send a request and return the decoded JSON body."""
        client = await self._get_client()

        try:
            response = await client.request(
                method,
                path,
                headers={"X-Organization-ID": organization_id},
                **kwargs,
            )
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Appointment service {method} {path} returned {e.response.status_code}")
            raise BookingError(
                f"Appointment service error on {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Appointment service {method} {path} failed: {e}")
            raise BookingError(f"Appointment service unreachable: {e}") from e
        except ValueError as e:
            raise BookingError(f"Invalid response from appointment service on {path}") from e

    # === Availability ===

    async def find_available_slots(
        self,
        organization_id: str,
        specialty: str,
        date: str,
        time: Optional[str] = None,
        urgency: Optional[str] = None,
        limit: int = 5,
    ) -> list[AvailableSlot]:
        """Find available appointment slots.

        Args:
            organization_id: Tenant identifier
            specialty: Medical specialty
            date: Preferred date (ISO format or expression)
            time: Preferred time (HH:MM)
            urgency: low/medium/high/emergency
            limit: Maximum slots to return

        Returns:
            List of available slots
        """
        payload: dict = {"specialty": specialty, "date": date, "limit": limit}
        if time:
            payload["time"] = time
        if urgency:
            payload["urgency"] = urgency

        data = await self._request(
            "POST", "/api/availability/search", organization_id, json=payload
        )
        return _parse_items(
            data, ("slots", "items"), AvailableSlot.from_dict, "/api/availability/search"
        )

    # === Appointments ===

    async def create_appointment(
        self,
        organization_id: str,
        patient_id: str,
        slot: AvailableSlot,
        notes: Optional[str] = None,
    ) -> str:
        """Create a new appointment.

        Args:
            organization_id: Tenant identifier
            patient_id: Patient identifier
            slot: Selected slot
            notes: Free-text notes stored with the appointment

        Returns:
            Appointment id
        """
        payload: dict = {
            "patient_id": patient_id,
            "doctor_id": slot.doctor_id,
            "appointment_date": slot.date,
            "start_time": slot.start_time,
        }
        if slot.end_time:
            payload["end_time"] = slot.end_time
        if slot.service_id:
            payload["service_id"] = slot.service_id
        if slot.location_id:
            payload["location_id"] = slot.location_id
        if notes:
            payload["notes"] = notes

        data = await self._request("POST", "/api/appointments", organization_id, json=payload)
        appointment_id = data.get("appointment_id", data.get("id")) if isinstance(data, dict) else None
        if not appointment_id:
            raise BookingError("Appointment service did not return an appointment id")
        return str(appointment_id)

    async def list_appointments(
        self,
        organization_id: str,
        patient_id: str,
        statuses: list[str],
        limit: int = 5,
    ) -> list[Appointment]:
        """List a patient's appointments.

        Args:
            organization_id: Tenant identifier
            patient_id: Patient identifier
            statuses: Statuses to include
            limit: Maximum appointments to return

        Returns:
            List of appointments
        """
        data = await self._request(
            "GET",
            "/api/appointments",
            organization_id,
            params={
                "patient_id": patient_id,
                "status": ",".join(statuses),
                "limit": limit,
            },
        )
        return _parse_items(
            data, ("appointments", "items"), Appointment.from_dict, "/api/appointments"
        )
