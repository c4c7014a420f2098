"""
Appointment Endpoints.

Staff and front-end operations that need a known patient id: booking one
of the slots offered in a conversation and listing a patient's
appointments. The patient id a confirmed booking was made for is stored
on the conversation, so later inquiries in the chat can use it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import (
    get_booking_bridge,
    get_conversation_store,
    get_instance_repository,
    get_pipeline,
)
from app.channels.config import ChannelInstance
from app.channels.repository import ChannelInstanceRepository
from app.core.booking.bridge import BookingBridge
from app.core.booking.types import (
    ACTIVE_APPOINTMENT_STATUSES,
    AppointmentQuery,
    AvailableSlot,
)
from app.core.conversation.models import Conversation
from app.core.conversation.store import ConversationStore
from app.core.pipeline.engine import ConversationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


class SlotModel(BaseModel):
    """Slot as it was offered to the patient."""

    doctor_id: str = Field(..., min_length=1)
    date: str = Field(..., description="YYYY-MM-DD")
    start_time: str = Field(..., description="HH:MM")
    doctor_name: Optional[str] = None
    specialty: Optional[str] = None
    end_time: Optional[str] = None
    service_id: Optional[str] = None
    location_id: Optional[str] = None

    def to_slot(self) -> AvailableSlot:
        return AvailableSlot(**self.model_dump())


class ConfirmAppointmentRequest(BaseModel):
    """Book one of the offered slots."""

    conversation_id: str = Field(..., min_length=1)
    slot_index: int = Field(..., description="Zero-based index into available_slots")
    available_slots: list[SlotModel] = Field(..., description="Slots offered in the conversation")
    patient_id: Optional[str] = Field(
        None, description="Patient to book for; defaults to the conversation's patient"
    )


class AppointmentQueryRequest(BaseModel):
    """List a patient's appointments."""

    conversation_id: str = Field(..., min_length=1)
    patient_id: Optional[str] = Field(
        None, description="Patient to look up; defaults to the conversation's patient"
    )
    status: list[str] = Field(
        default_factory=lambda: list(ACTIVE_APPOINTMENT_STATUSES),
        description="Appointment statuses to include",
    )


class BookingResponse(BaseModel):
    """Result of a booking operation, with the text for the patient."""

    success: bool
    message: str
    next_step: Optional[str] = None
    appointment_id: Optional[str] = None


class AppointmentListResponse(BaseModel):
    conversation_id: str
    message: str


async def _load(
    conversation_id: str,
    conversations: ConversationStore,
    instances: ChannelInstanceRepository,
) -> tuple[Conversation, ChannelInstance]:
    conversation = await conversations.get(conversation_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )

    instance = await instances.get(conversation.instance_id)
    if instance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Channel instance not found",
        )
    return conversation, instance


@router.post(
    "/confirm",
    response_model=BookingResponse,
    summary="Book an offered slot",
    responses={404: {"description": "Conversation or channel instance not found"}},
)
async def confirm_appointment(
    request: ConfirmAppointmentRequest,
    bridge: BookingBridge = Depends(get_booking_bridge),
    pipeline: ConversationPipeline = Depends(get_pipeline),
    conversations: ConversationStore = Depends(get_conversation_store),
    instances: ChannelInstanceRepository = Depends(get_instance_repository),
) -> BookingResponse:
    """
    Book the selected slot for the patient.

    Failures of the appointment service come back as `success: false`
    with a patient-facing message, never as an HTTP error.
    """
    conversation, instance = await _load(request.conversation_id, conversations, instances)
    patient_id = request.patient_id or conversation.patient_id

    result = await bridge.confirm_appointment_slot(
        conversation_id=conversation.id,
        slot_index=request.slot_index,
        slots=[slot.to_slot() for slot in request.available_slots],
        patient_id=patient_id,
        instance=instance,
    )

    if result.success and patient_id != conversation.patient_id:
        await pipeline.link_patient(conversation.id, patient_id)

    return BookingResponse(**result.to_dict())


@router.post(
    "/query",
    response_model=AppointmentListResponse,
    summary="List a patient's appointments",
    responses={404: {"description": "Conversation or channel instance not found"}},
)
async def query_appointments(
    request: AppointmentQueryRequest,
    bridge: BookingBridge = Depends(get_booking_bridge),
    conversations: ConversationStore = Depends(get_conversation_store),
    instances: ChannelInstanceRepository = Depends(get_instance_repository),
) -> AppointmentListResponse:
    conversation, instance = await _load(request.conversation_id, conversations, instances)

    message = await bridge.query_appointments(
        AppointmentQuery(
            channel_type=conversation.channel_type,
            conversation_id=conversation.id,
            patient_id=request.patient_id or conversation.patient_id,
            status=request.status,
        ),
        instance,
    )
    return AppointmentListResponse(conversation_id=conversation.id, message=message)
