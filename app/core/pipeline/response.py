"""
Response Composer.

Builds the reply text for a processed message: booking and inquiry intents
go through the booking bridge, emergencies get a fixed text, everything
else is generated by Claude with per-intent fallback templates.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.channels.config import ChannelInstance
from app.core.booking.bridge import BookingBridge
from app.core.booking.types import AppointmentQuery, BookingRequest, BookingResult
from app.core.conversation.models import Conversation, NextAction
from app.core.intelligence.entities.types import ExtractedEntities, Urgency
from app.core.intelligence.intent.types import MessageIntent
from app.infra.claude import ClaudeClient, get_claude_client

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = "Eres un asistente médico virtual profesional y empático."

RESPONSE_PROMPT = """Genera una respuesta apropiada para el paciente.

Intención: {intent}
Entidades: {entities}
Canal: {channel}
Último mensaje del paciente: "{user_message}"

La respuesta debe ser:
- Profesional y empática
- Apropiada para el contexto médico
- Clara y concisa (1-3 frases)
- En español

Responde solo con el mensaje a enviar."""

EMERGENCY_RESPONSE = (
    "Entiendo que es una emergencia. Por favor contacte inmediatamente al 911 "
    "o diríjase al servicio de urgencias más cercano. Un miembro de nuestro "
    "personal ha sido notificado."
)

DEFAULT_RESPONSES = {
    MessageIntent.APPOINTMENT_BOOKING: (
        "Entiendo que desea agendar una cita. ¿Podría indicarme qué especialidad necesita?"
    ),
    MessageIntent.APPOINTMENT_INQUIRY: (
        "Le ayudo a consultar sus citas. ¿Podría proporcionarme su número de identificación?"
    ),
    MessageIntent.APPOINTMENT_RESCHEDULE: (
        "Puedo ayudarle a reprogramar su cita. ¿Cuál es el número de su cita actual?"
    ),
    MessageIntent.APPOINTMENT_CANCEL: (
        "Entiendo que desea cancelar una cita. ¿Podría confirmarme los detalles?"
    ),
    MessageIntent.GENERAL_INQUIRY: "¿En qué puedo ayudarle hoy?",
    MessageIntent.EMERGENCY: EMERGENCY_RESPONSE,
    MessageIntent.GREETING: (
        "¡Hola! Soy su asistente virtual de citas médicas. ¿En qué puedo ayudarle hoy?"
    ),
    MessageIntent.UNKNOWN: (
        "Disculpe, no entendí su mensaje. ¿Podría reformularlo o contactar a nuestro personal?"
    ),
}

ERROR_RESPONSE = (
    "Disculpe, hubo un problema al procesar su mensaje. Por favor intente "
    "nuevamente o contacte a nuestro personal."
)


@dataclass
class ComposedResponse:
    """Reply text plus anything composing it added to the next actions."""

    text: str
    extra_actions: list[NextAction] = field(default_factory=list)
    booking: Optional[BookingResult] = None


class ResponseComposer:
    """
    LLM-based response composer with fallback templates.

    Never raises: every failure ends in a template reply.
    """

    def __init__(
        self,
        booking_bridge: BookingBridge,
        claude_client: Optional[ClaudeClient] = None,
    ):
        """Initialize composer.

        Args:
            booking_bridge: Bridge to the appointment service
            claude_client: Claude client (uses singleton if not provided)
        """
        self.booking_bridge = booking_bridge
        self._claude_client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get Claude client."""
        if self._claude_client is None:
            self._claude_client = await get_claude_client()
        return self._claude_client

    async def compose(
        self,
        intent: MessageIntent,
        entities: ExtractedEntities,
        conversation: Conversation,
        instance: ChannelInstance,
        user_message: str,
    ) -> ComposedResponse:
        """Compose the reply for a processed message.

        Args:
            intent: Detected intent
            entities: Extracted entities
            conversation: Conversation the message belongs to
            instance: Channel instance (tenant and AI settings)
            user_message: Text the patient sent

        Returns:
            ComposedResponse
        """
        if intent == MessageIntent.EMERGENCY:
            return ComposedResponse(text=EMERGENCY_RESPONSE)

        if intent == MessageIntent.APPOINTMENT_BOOKING:
            return await self._compose_booking(entities, conversation, instance)

        if intent == MessageIntent.APPOINTMENT_INQUIRY:
            text = await self.booking_bridge.query_appointments(
                AppointmentQuery(
                    channel_type=instance.channel_type,
                    conversation_id=conversation.id,
                    patient_id=conversation.patient_id,
                ),
                instance,
            )
            return ComposedResponse(text=text)

        return ComposedResponse(
            text=await self._generate(intent, entities, instance, user_message)
        )

    async def _compose_booking(
        self,
        entities: ExtractedEntities,
        conversation: Conversation,
        instance: ChannelInstance,
    ) -> ComposedResponse:
        request = BookingRequest(
            channel_type=instance.channel_type,
            conversation_id=conversation.id,
            patient_id=conversation.patient_id,
            specialty=entities.specialty or "",
            preferred_date=entities.date or "",
            preferred_time=entities.time,
            urgency=entities.urgency or Urgency.LOW,
            symptoms=list(entities.symptoms),
        )
        result = await self.booking_bridge.process_booking_request(request, instance)

        extra = []
        if result.is_service_failure:
            extra.append(NextAction.ESCALATE_TO_HUMAN)

        return ComposedResponse(text=result.message, extra_actions=extra, booking=result)

    async def _generate(
        self,
        intent: MessageIntent,
        entities: ExtractedEntities,
        instance: ChannelInstance,
        user_message: str,
    ) -> str:
        """Generate a free-text reply, falling back to the intent template."""
        ai_config = instance.config.ai_config
        if not ai_config.enabled:
            return self.default_response(intent)

        try:
            client = await self._get_client()

            prompt = RESPONSE_PROMPT.format(
                intent=intent.value,
                entities=json.dumps(entities.to_dict(), ensure_ascii=False),
                channel=instance.channel_type.value,
                user_message=user_message[:500],
            )

            response = await asyncio.wait_for(
                client.generate(
                    prompt=prompt,
                    system_prompt=ai_config.custom_prompt or DEFAULT_SYSTEM_PROMPT,
                    model=ai_config.model,
                    max_tokens=ai_config.max_tokens,
                    temperature=ai_config.temperature,
                ),
                timeout=ai_config.timeout_seconds,
            )

            text = response.content.strip()
            return text or self.default_response(intent)

        except Exception as e:
            logger.warning(f"LLM response generation failed: {e}")
            return self.default_response(intent)

    @staticmethod
    def default_response(intent: MessageIntent) -> str:
        """Template reply for an intent."""
        return DEFAULT_RESPONSES.get(intent, DEFAULT_RESPONSES[MessageIntent.UNKNOWN])

    @staticmethod
    def error_response() -> str:
        """Generic apology used when processing fails."""
        return ERROR_RESPONSE
