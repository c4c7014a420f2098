"""Tests for reply composition."""

import asyncio
from dataclasses import dataclass
from unittest.mock import AsyncMock

import pytest

from app.core.booking.bridge import BookingBridge
from app.core.booking.types import BookingResult, BookingStep
from app.core.conversation.models import ContactInfo, Conversation, NextAction
from app.core.intelligence.entities.types import ExtractedEntities, Urgency
from app.core.intelligence.intent.types import MessageIntent
from app.core.pipeline.response import (
    DEFAULT_RESPONSES,
    DEFAULT_SYSTEM_PROMPT,
    EMERGENCY_RESPONSE,
    ResponseComposer,
)
from tests.fakes import make_instance


@dataclass
class MockClaudeResponse:
    content: str
    model: str = "claude-sonnet-4-20250514"
    input_tokens: int = 200
    output_tokens: int = 40
    stop_reason: str = "end_turn"
    latency_ms: float = 300.0


@pytest.fixture
def bridge():
    return AsyncMock(spec=BookingBridge)


@pytest.fixture
def claude():
    client = AsyncMock()
    client.generate.return_value = MockClaudeResponse(content="¡Buenos días! ¿En qué le ayudo?")
    return client


@pytest.fixture
def composer(bridge, claude):
    return ResponseComposer(booking_bridge=bridge, claude_client=claude)


@pytest.fixture
def conversation(instance):
    return Conversation(
        channel_type=instance.channel_type,
        instance_id=instance.id,
        contact=ContactInfo("573001112233", name="Ana Pérez"),
        patient_id="pat-1",
    )


class TestResponseComposer:
    """Reply selection per intent."""

    @pytest.mark.asyncio
    async def test_emergency_uses_fixed_text(self, composer, claude, conversation, instance):
        composed = await composer.compose(
            MessageIntent.EMERGENCY, ExtractedEntities(), conversation, instance, "me duele el pecho"
        )

        assert composed.text == EMERGENCY_RESPONSE
        claude.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_booking_goes_through_bridge(self, composer, bridge, conversation, instance):
        bridge.process_booking_request.return_value = BookingResult(
            success=False, message="¿Qué día prefiere?", next_step=BookingStep.PROVIDE_DATE
        )
        entities = ExtractedEntities(specialty="cardiología", urgency=Urgency.HIGH, symptoms=["mareo"])

        composed = await composer.compose(
            MessageIntent.APPOINTMENT_BOOKING, entities, conversation, instance, "cardiología"
        )

        request = bridge.process_booking_request.call_args.args[0]
        assert request.specialty == "cardiología"
        assert request.preferred_date == ""
        assert request.urgency == Urgency.HIGH
        assert request.symptoms == ["mareo"]
        assert request.patient_id == "pat-1"
        assert request.conversation_id == conversation.id
        assert composed.text == "¿Qué día prefiere?"
        assert composed.extra_actions == []

    @pytest.mark.asyncio
    async def test_booking_service_failure_escalates(self, composer, bridge, conversation, instance):
        bridge.process_booking_request.return_value = BookingResult(
            success=False, message="Disculpe, hubo un problema.", error="503"
        )

        composed = await composer.compose(
            MessageIntent.APPOINTMENT_BOOKING,
            ExtractedEntities(specialty="cardiología", date="2024-05-20"),
            conversation,
            instance,
            "cita",
        )

        assert composed.extra_actions == [NextAction.ESCALATE_TO_HUMAN]
        assert composed.booking.error == "503"

    @pytest.mark.asyncio
    async def test_inquiry_uses_patient_id(self, composer, bridge, conversation, instance):
        bridge.query_appointments.return_value = "Sus próximas citas: ..."

        composed = await composer.compose(
            MessageIntent.APPOINTMENT_INQUIRY, ExtractedEntities(), conversation, instance, "mis citas"
        )

        query = bridge.query_appointments.call_args.args[0]
        assert query.patient_id == "pat-1"
        assert composed.text == "Sus próximas citas: ..."

    @pytest.mark.asyncio
    async def test_generated_reply(self, composer, claude, conversation, instance):
        composed = await composer.compose(
            MessageIntent.GREETING, ExtractedEntities(), conversation, instance, "Buenos días"
        )

        assert composed.text == "¡Buenos días! ¿En qué le ayudo?"
        kwargs = claude.generate.call_args.kwargs
        assert kwargs["system_prompt"] == DEFAULT_SYSTEM_PROMPT
        assert kwargs["max_tokens"] == 500
        assert '"Buenos días"' in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_instance_ai_settings_are_used(self, bridge, claude, conversation):
        instance = make_instance(config={
            "ai_config": {
                "model": "claude-3-5-haiku-20241022",
                "temperature": 0.2,
                "custom_prompt": "Eres la recepcionista de la Clínica Central.",
            }
        })
        composer = ResponseComposer(bridge, claude_client=claude)

        await composer.compose(
            MessageIntent.GENERAL_INQUIRY, ExtractedEntities(), conversation, instance, "horarios"
        )

        kwargs = claude.generate.call_args.kwargs
        assert kwargs["model"] == "claude-3-5-haiku-20241022"
        assert kwargs["temperature"] == 0.2
        assert kwargs["system_prompt"] == "Eres la recepcionista de la Clínica Central."

    @pytest.mark.asyncio
    async def test_llm_error_falls_back_to_template(self, composer, claude, conversation, instance):
        claude.generate.side_effect = RuntimeError("overloaded")

        composed = await composer.compose(
            MessageIntent.APPOINTMENT_CANCEL, ExtractedEntities(), conversation, instance, "cancelar"
        )

        assert composed.text == DEFAULT_RESPONSES[MessageIntent.APPOINTMENT_CANCEL]

    @pytest.mark.asyncio
    async def test_llm_timeout_falls_back_to_template(self, bridge, conversation):
        async def slow(**kwargs):
            await asyncio.sleep(1)
            return MockClaudeResponse(content="tarde")

        claude = AsyncMock()
        claude.generate.side_effect = slow
        instance = make_instance(config={"ai_config": {"timeout_seconds": 0.01}})
        composer = ResponseComposer(bridge, claude_client=claude)

        composed = await composer.compose(
            MessageIntent.GREETING, ExtractedEntities(), conversation, instance, "hola"
        )

        assert composed.text == DEFAULT_RESPONSES[MessageIntent.GREETING]

    @pytest.mark.asyncio
    async def test_empty_generation_falls_back(self, composer, claude, conversation, instance):
        claude.generate.return_value = MockClaudeResponse(content="   ")

        composed = await composer.compose(
            MessageIntent.UNKNOWN, ExtractedEntities(), conversation, instance, "???"
        )

        assert composed.text == DEFAULT_RESPONSES[MessageIntent.UNKNOWN]

    @pytest.mark.asyncio
    async def test_ai_disabled_uses_template(self, bridge, claude, conversation):
        instance = make_instance(config={"ai_config": {"enabled": False}})
        composer = ResponseComposer(bridge, claude_client=claude)

        composed = await composer.compose(
            MessageIntent.GREETING, ExtractedEntities(), conversation, instance, "hola"
        )

        assert composed.text == DEFAULT_RESPONSES[MessageIntent.GREETING]
        claude.generate.assert_not_called()

    def test_every_intent_has_a_template(self):
        assert set(DEFAULT_RESPONSES) == set(MessageIntent)
