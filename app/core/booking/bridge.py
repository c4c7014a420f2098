"""
Booking bridge.

Turns booking-shaped conversational requests into Appointment Service
calls and formats the results as patient-facing Spanish text. Service
failures never leak internal error text: the patient gets a generic retry
message and the error is kept on the result for logs and audit.
"""

import asyncio
import logging
from datetime import date
from typing import Optional

from app.channels.config import ChannelInstance
from app.core.audit.logger import AuditLogger
from app.core.audit.models import AuditAction
from app.core.errors import BookingError
from .client import AppointmentService
from .types import (
    Appointment,
    AppointmentQuery,
    AvailableSlot,
    BookingRequest,
    BookingResult,
    BookingStep,
)

logger = logging.getLogger(__name__)

MAX_SLOTS_SHOWN = 3
MAX_APPOINTMENTS_LISTED = 5

STATUS_LABELS = {
    "scheduled": "Programada",
    "confirmed": "Confirmada",
    "pending": "Pendiente",
    "cancelled": "Cancelada",
    "completed": "Completada",
    "no_show": "No asistió",
    "in_progress": "En curso",
}

MESSAGES = {
    "provide_specialty": (
        "Para agendar su cita, necesito saber qué especialidad médica necesita. "
        "Por ejemplo: cardiología, dermatología, medicina general, etc."
    ),
    "provide_date": (
        "Perfecto, necesita una cita de {specialty}. ¿Para qué fecha le gustaría agendar? "
        'Puede decirme una fecha específica o algo como "mañana", "la próxima semana", etc.'
    ),
    "slots_found": (
        "Encontré estas opciones disponibles para {specialty}:\n\n{slots}\n\n"
        "¿Cuál horario le conviene más? Responda con el número de la opción."
    ),
    "no_slots": (
        "Lo siento, no encontré disponibilidad para {specialty} en {date}. "
        "¿Le gustaría que le sugiera fechas alternativas o prefiere contactar "
        "directamente con nuestro personal?"
    ),
    "booking_error": (
        "Disculpe, hubo un problema al procesar su solicitud de cita. "
        "Por favor intente nuevamente."
    ),
    "invalid_slot_selection": (
        "Por favor seleccione un número válido de la lista de horarios disponibles."
    ),
    "missing_patient_info": (
        "Para confirmar su cita, necesito algunos datos adicionales. ¿Podría "
        "proporcionarme su nombre completo y número de identificación?"
    ),
    "confirmation_error": (
        "No pude confirmar su cita. Por favor intente con otro horario o "
        "contacte a nuestro personal."
    ),
    "confirmed": (
        "¡Perfecto! Su cita ha sido agendada exitosamente:\n\n"
        "👨‍⚕️ {doctor}\n"
        "📅 {date} a las {time}\n"
        "🆔 Cita #{appointment_id}\n\n"
        "¿Hay algo más en lo que pueda ayudarle?"
    ),
    "missing_patient_id": (
        "Para consultar sus citas, necesito que me proporcione su número de "
        "identificación o documento."
    ),
    "no_appointments": (
        "No encontré citas programadas. ¿Le gustaría agendar una nueva cita?"
    ),
    "appointments": (
        "Sus citas:\n\n{appointments}\n\n¿Necesita modificar alguna de estas citas?"
    ),
    "query_error": (
        "Disculpe, hubo un problema al consultar sus citas. Por favor intente nuevamente."
    ),
}


def _service_error(error: Exception) -> str:
    """Internal description of an appointment service failure."""
    if isinstance(error, asyncio.TimeoutError):
        return "Appointment service timed out"
    if isinstance(error, BookingError):
        return str(error)
    return f"Unexpected appointment service failure: {error.__class__.__name__}: {error}"


def format_date(value: str) -> str:
    """Show ISO dates as DD/MM/YYYY, leave anything else untouched."""
    try:
        return date.fromisoformat(value[:10]).strftime("%d/%m/%Y")
    except (TypeError, ValueError):
        return value


def translate_status(status: str) -> str:
    """Appointment status in Spanish."""
    return STATUS_LABELS.get(status, status)


def _doctor_label(name: Optional[str], specialty: Optional[str]) -> str:
    label = name or "Doctor disponible"
    return f"{label} ({specialty})" if specialty else label


def format_slots(slots: list[AvailableSlot]) -> str:
    """Numbered list of slots, as shown to the patient."""
    lines = []
    for index, slot in enumerate(slots, start=1):
        lines.append(
            f"{index}. 👨‍⚕️ {_doctor_label(slot.doctor_name, slot.specialty)}\n"
            f"   📅 {format_date(slot.date)} a las {slot.start_time}"
        )
    return "\n\n".join(lines)


def format_appointments(appointments: list[Appointment]) -> str:
    """Numbered list of existing appointments with their ids."""
    lines = []
    for index, appointment in enumerate(appointments, start=1):
        service = appointment.service_name or "Consulta médica"
        doctor = appointment.doctor_name or "Doctor asignado"
        lines.append(
            f"{index}. {service} - {doctor}\n"
            f"   📅 {format_date(appointment.date)} a las {appointment.start_time}\n"
            f"   Estado: {translate_status(appointment.status)}\n"
            f"   ID: {appointment.id}"
        )
    return "\n\n".join(lines)


class BookingBridge:
    """
    Bridge between the conversation pipeline and the Appointment Service.

    Every service call is bounded by `timeout`; a timeout is handled like
    any other service failure.
    """

    def __init__(
        self,
        appointment_service: AppointmentService,
        audit_logger: Optional[AuditLogger] = None,
        timeout: float = 10.0,
    ):
        self.appointment_service = appointment_service
        self.audit_logger = audit_logger
        self.timeout = timeout

    async def process_booking_request(
        self,
        request: BookingRequest,
        instance: ChannelInstance,
    ) -> BookingResult:
        """
        Search availability for a booking request.

        Args:
            request: Booking request built from conversation entities
            instance: Channel instance (tenant) the request belongs to

        Returns:
            BookingResult with the patient-facing message
        """
        if not request.specialty.strip():
            return BookingResult(
                success=False,
                message=MESSAGES["provide_specialty"],
                next_step=BookingStep.PROVIDE_SPECIALTY,
            )

        if not request.preferred_date.strip():
            return BookingResult(
                success=False,
                message=MESSAGES["provide_date"].format(specialty=request.specialty),
                next_step=BookingStep.PROVIDE_DATE,
            )

        logger.info(
            f"Searching availability: specialty={request.specialty}, "
            f"date={request.preferred_date}, conversation={request.conversation_id}"
        )

        try:
            slots = await asyncio.wait_for(
                self.appointment_service.find_available_slots(
                    organization_id=instance.organization_id,
                    specialty=request.specialty,
                    date=request.preferred_date,
                    time=request.preferred_time,
                    urgency=request.urgency.value,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            error = _service_error(e)
            logger.error(f"Availability search failed for {request.conversation_id}: {error}")
            return BookingResult(
                success=False,
                message=MESSAGES["booking_error"],
                error=error,
            )

        if not slots:
            return BookingResult(
                success=False,
                message=MESSAGES["no_slots"].format(
                    specialty=request.specialty,
                    date=format_date(request.preferred_date),
                ),
                next_step=BookingStep.SUGGEST_ALTERNATIVES,
            )

        shown = slots[:MAX_SLOTS_SHOWN]
        return BookingResult(
            success=True,
            message=MESSAGES["slots_found"].format(
                specialty=request.specialty,
                slots=format_slots(shown),
            ),
            available_slots=shown,
            next_step=BookingStep.CONFIRM_SLOT,
        )

    async def confirm_appointment_slot(
        self,
        conversation_id: str,
        slot_index: int,
        slots: list[AvailableSlot],
        patient_id: Optional[str],
        instance: ChannelInstance,
    ) -> BookingResult:
        """
        Book one of the slots previously offered to the patient.

        Args:
            conversation_id: Conversation the slots were offered in
            slot_index: Zero-based index into `slots`
            slots: Slots offered to the patient
            patient_id: Patient identifier, if known
            instance: Channel instance (tenant)

        Returns:
            BookingResult with the confirmation or the reason it failed
        """
        if slot_index < 0 or slot_index >= len(slots):
            return BookingResult(success=False, message=MESSAGES["invalid_slot_selection"])

        if not patient_id:
            return BookingResult(
                success=False,
                message=MESSAGES["missing_patient_info"],
                next_step=BookingStep.PROVIDE_PATIENT_INFO,
            )

        slot = slots[slot_index]

        try:
            appointment_id = await asyncio.wait_for(
                self.appointment_service.create_appointment(
                    organization_id=instance.organization_id,
                    patient_id=patient_id,
                    slot=slot,
                    notes=f"Cita agendada vía {instance.channel_type.value}",
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            error = _service_error(e)
            logger.error(f"Appointment creation failed for {conversation_id}: {error}")
            await self._audit(
                instance,
                conversation_id,
                AuditAction.APPOINTMENT_BOOKING_FAILED,
                patient_id,
                {"doctor_id": slot.doctor_id, "date": slot.date, "error": error},
            )
            return BookingResult(
                success=False,
                message=MESSAGES["confirmation_error"],
                error=error,
            )

        await self._audit(
            instance,
            conversation_id,
            AuditAction.APPOINTMENT_CREATED,
            patient_id,
            {
                "appointment_id": appointment_id,
                "doctor_id": slot.doctor_id,
                "appointment_date": slot.date,
                "start_time": slot.start_time,
            },
        )

        return BookingResult(
            success=True,
            appointment_id=appointment_id,
            message=MESSAGES["confirmed"].format(
                doctor=_doctor_label(slot.doctor_name, slot.specialty),
                date=format_date(slot.date),
                time=slot.start_time,
                appointment_id=appointment_id,
            ),
        )

    async def query_appointments(
        self,
        query: AppointmentQuery,
        instance: ChannelInstance,
    ) -> str:
        """
        List a patient's upcoming appointments as text.

        Args:
            query: Who and which statuses to look up
            instance: Channel instance (tenant)

        Returns:
            Patient-facing message
        """
        if not query.patient_id:
            return MESSAGES["missing_patient_id"]

        try:
            appointments = await asyncio.wait_for(
                self.appointment_service.list_appointments(
                    organization_id=instance.organization_id,
                    patient_id=query.patient_id,
                    statuses=query.status,
                    limit=MAX_APPOINTMENTS_LISTED,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.error(f"Appointment query failed for {query.conversation_id}: {_service_error(e)}")
            return MESSAGES["query_error"]

        if not appointments:
            return MESSAGES["no_appointments"]

        return MESSAGES["appointments"].format(
            appointments=format_appointments(appointments[:MAX_APPOINTMENTS_LISTED])
        )

    async def _audit(
        self,
        instance: ChannelInstance,
        conversation_id: str,
        action: AuditAction,
        patient_id: Optional[str],
        details: dict,
    ) -> None:
        if self.audit_logger is None:
            return
        await self.audit_logger.log_appointment_event(
            instance=instance,
            conversation_id=conversation_id,
            action=action,
            patient_id=patient_id,
            details=details,
        )
