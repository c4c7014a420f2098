"""Tests for the HTTP surface: webhooks, context reset, appointments, health."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.dependencies import (
    get_adapter_registry,
    get_booking_bridge,
    get_conversation_store,
    get_instance_repository,
    get_pipeline,
)
from app.api.security import (
    SIGNATURE_HEADER,
    SIGNATURE_PREFIX,
    compute_signature,
    is_webhook_authorized,
    verify_signature,
)
from app.channels.adapter import AdapterRegistry
from app.channels.repository import InMemoryChannelInstanceRepository
from app.channels.types import ChannelType
from app.config import settings
from app.core.audit.models import AuditAction
from app.core.booking.bridge import BookingBridge
from app.core.booking.client import AppointmentService
from app.core.booking.types import Appointment
from app.core.conversation.models import ContactInfo, Conversation, ConversationStage
from app.core.errors import BookingError
from app.core.intelligence.intent.types import MessageIntent
from app.core.pipeline.engine import ConversationPipeline
from app.core.pipeline.response import ResponseComposer
from app.main import app
from tests.fakes import OPEN_TIME, make_instance

SECRET = "s3cret"


def _payload(event: str = "messages.upsert", message_id: str = "wamid.1", text: str = "Hola") -> dict:
    return {
        "event": event,
        "instance": "clinica-central",
        "data": {
            "id": message_id,
            "channel_type": "whatsapp",
            "instance_id": "inst-1",
            "conversation_id": "573001112233@s.whatsapp.net",
            "sender": {"id": "573001112233", "name": "Ana Pérez"},
            "content": {"type": "text", "text": text},
            "timestamp": "2024-05-15T15:00:00Z",
        },
    }


def _signed(payload: dict, secret: str = SECRET) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: f"{SIGNATURE_PREFIX}{compute_signature(secret, body)}",
    }
    return body, headers


@pytest.fixture
def instances():
    return InMemoryChannelInstanceRepository([
        make_instance(config={"webhook": {"secret": SECRET}}),
        make_instance(instance_id="inst-open"),
    ])


@pytest.fixture
def registry(adapter):
    registry = AdapterRegistry()
    registry.register(ChannelType.WHATSAPP, lambda instance: adapter)
    return registry


@pytest.fixture
def appointment_service():
    return AsyncMock(spec=AppointmentService)


@pytest.fixture
def booking_bridge(appointment_service, audit_logger):
    return BookingBridge(appointment_service, audit_logger=audit_logger)


@pytest.fixture
def pipeline(conversation_store, audit_logger, classifier, extractor, booking_bridge):
    claude = AsyncMock()
    claude.generate.side_effect = RuntimeError("no model in tests")
    composer = ResponseComposer(booking_bridge, claude_client=claude)
    return ConversationPipeline(
        store=conversation_store,
        audit_logger=audit_logger,
        classifier=classifier,
        extractor=extractor,
        composer=composer,
        clock=lambda: OPEN_TIME,
    )


@pytest_asyncio.fixture
async def client(pipeline, registry, instances, conversation_store, booking_bridge):
    app.dependency_overrides[get_booking_bridge] = lambda: booking_bridge
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_adapter_registry] = lambda: registry
    app.dependency_overrides[get_instance_repository] = lambda: instances
    app.dependency_overrides[get_conversation_store] = lambda: conversation_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestWebhookSignature:
    """HMAC verification of deliveries."""

    def test_prefixed_and_bare_signatures(self):
        body = b'{"event": "messages.upsert"}'
        digest = compute_signature(SECRET, body)

        assert verify_signature(SECRET, body, digest)
        assert verify_signature(SECRET, body, f"sha256={digest.upper()}")
        assert not verify_signature(SECRET, body + b" ", digest)
        assert not verify_signature(SECRET, body, None)

    def test_unsigned_instances(self):
        instance = make_instance()

        assert is_webhook_authorized(instance, b"{}", None, allow_unsigned=True)
        assert not is_webhook_authorized(instance, b"{}", None, allow_unsigned=False)


class TestWebhookEndpoint:
    """POST /webhooks/{channel}/{instance}."""

    @pytest.mark.asyncio
    async def test_processes_signed_delivery(self, client, adapter, audit_store):
        body, headers = _signed(_payload())

        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processed"
        assert data["success"] is True
        assert data["intent"] == MessageIntent.GREETING.value
        assert data["response_sent"] is True
        assert len(adapter.sent) == 1
        assert audit_store.entries[-1].action == AuditAction.MESSAGE_PROCESSED

    @pytest.mark.asyncio
    async def test_redelivery_is_acknowledged_as_duplicate(self, client, adapter):
        body, headers = _signed(_payload())

        await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)
        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        assert len(adapter.sent) == 1

    @pytest.mark.asyncio
    async def test_bad_signature(self, client, adapter):
        body, headers = _signed(_payload(), secret="wrong")

        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 401
        assert adapter.sent == []

    @pytest.mark.asyncio
    async def test_unsigned_accepted_in_development(self, client):
        with patch.object(settings, "app_env", "development"):
            response = await client.post("/webhooks/whatsapp/inst-open", json=_payload())

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unsigned_rejected_in_production(self, client):
        with patch.object(settings, "app_env", "production"):
            response = await client.post("/webhooks/whatsapp/inst-open", json=_payload())

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_instance(self, client):
        response = await client.post("/webhooks/whatsapp/missing", json=_payload())

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_channel_mismatch(self, client):
        body, headers = _signed(_payload())

        response = await client.post("/webhooks/telegram/inst-1", content=body, headers=headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unsupported_channel(self, client):
        response = await client.post("/webhooks/fax/inst-1", json=_payload())

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_no_adapter_registered(self, client):
        app.dependency_overrides[get_adapter_registry] = AdapterRegistry
        body, headers = _signed(_payload())

        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_non_message_event_is_ignored(self, client, adapter):
        body, headers = _signed(_payload(event="connection.update"))

        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert adapter.sent == []

    @pytest.mark.asyncio
    async def test_missing_event_is_rejected(self, client):
        body, headers = _signed({"data": {}})

        response = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"


class TestContextReset:
    """DELETE /conversations/{id}/context."""

    @pytest.mark.asyncio
    async def test_reset_clears_emergency(self, client, classifier, conversation_store, audit_store):
        classifier.intent = MessageIntent.EMERGENCY
        body, headers = _signed(_payload(text="me duele el pecho"))
        processed = await client.post("/webhooks/whatsapp/inst-1", content=body, headers=headers)
        conversation_id = processed.json()["conversation_id"]

        response = await client.delete(
            f"/conversations/{conversation_id}/context",
            headers={"X-Actor-ID": "staff-7"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "conversation_id": conversation_id,
            "stage": ConversationStage.INITIAL.value,
            "reset_by": "staff-7",
        }
        stored = await conversation_store.get(conversation_id)
        assert stored.ai_context.conversation_stage == ConversationStage.INITIAL
        assert audit_store.entries[-1].action == AuditAction.CONTEXT_RESET

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, client):
        response = await client.delete(
            "/conversations/missing/context",
            headers={"X-Actor-ID": "staff-7"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_actor_header_is_required(self, client):
        response = await client.delete("/conversations/any/context")

        assert response.status_code == 422


def _slots_body() -> list[dict]:
    return [
        {"doctor_id": "doc-1", "date": "2024-05-20", "start_time": "09:00", "doctor_name": "Dr. Ruiz"},
        {"doctor_id": "doc-2", "date": "2024-05-20", "start_time": "10:00", "doctor_name": "Dr. Gómez"},
    ]


@pytest_asyncio.fixture
async def conversation(conversation_store):
    return await conversation_store.create(
        Conversation(
            channel_type=ChannelType.WHATSAPP,
            instance_id="inst-1",
            contact=ContactInfo(external_id="573001112233"),
        )
    )


class TestAppointmentEndpoints:
    """POST /appointments/confirm and /appointments/query."""

    @pytest.mark.asyncio
    async def test_confirm_books_and_links_patient(
        self, client, conversation, conversation_store, appointment_service, audit_store
    ):
        appointment_service.create_appointment.return_value = "apt-9"

        response = await client.post("/appointments/confirm", json={
            "conversation_id": conversation.id,
            "slot_index": 1,
            "available_slots": _slots_body(),
            "patient_id": "pat-1",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["appointment_id"] == "apt-9"
        assert "Dr. Gómez" in data["message"]
        kwargs = appointment_service.create_appointment.call_args.kwargs
        assert kwargs["patient_id"] == "pat-1"
        assert kwargs["slot"].doctor_id == "doc-2"

        stored = await conversation_store.get(conversation.id)
        assert stored.patient_id == "pat-1"
        assert audit_store.entries[-1].action == AuditAction.APPOINTMENT_CREATED

    @pytest.mark.asyncio
    async def test_confirm_without_patient(self, client, conversation, appointment_service):
        response = await client.post("/appointments/confirm", json={
            "conversation_id": conversation.id,
            "slot_index": 0,
            "available_slots": _slots_body(),
        })

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["next_step"] == "provide_patient_info"
        appointment_service.create_appointment.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirm_failure_keeps_conversation_unlinked(
        self, client, conversation, conversation_store, appointment_service
    ):
        appointment_service.create_appointment.side_effect = BookingError("slot taken", status_code=409)

        response = await client.post("/appointments/confirm", json={
            "conversation_id": conversation.id,
            "slot_index": 0,
            "available_slots": _slots_body(),
            "patient_id": "pat-1",
        })

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "slot taken" not in response.json()["message"]
        assert (await conversation_store.get(conversation.id)).patient_id is None

    @pytest.mark.asyncio
    async def test_confirm_unknown_conversation(self, client):
        response = await client.post("/appointments/confirm", json={
            "conversation_id": "missing",
            "slot_index": 0,
            "available_slots": _slots_body(),
            "patient_id": "pat-1",
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_query_uses_linked_patient(
        self, client, conversation, conversation_store, appointment_service
    ):
        conversation.patient_id = "pat-1"
        await conversation_store.save(conversation)
        appointment_service.list_appointments.return_value = [
            Appointment(id="apt-1", date="2024-06-01", start_time="10:30", status="confirmed"),
        ]

        response = await client.post("/appointments/query", json={"conversation_id": conversation.id})

        assert response.status_code == 200
        assert "01/06/2024" in response.json()["message"]
        kwargs = appointment_service.list_appointments.call_args.kwargs
        assert kwargs["patient_id"] == "pat-1"
        assert kwargs["organization_id"] == "org-1"

    @pytest.mark.asyncio
    async def test_query_status_filter(self, client, conversation, appointment_service):
        appointment_service.list_appointments.return_value = []

        response = await client.post("/appointments/query", json={
            "conversation_id": conversation.id,
            "patient_id": "pat-2",
            "status": ["cancelled"],
        })

        assert response.json()["message"].startswith("No encontré citas")
        assert appointment_service.list_appointments.call_args.kwargs["statuses"] == ["cancelled"]


class TestHealth:
    """Health probes."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_live(self, client):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_ready(self, client):
        with patch("app.api.routes.health.check_db_health", AsyncMock(return_value=True)), \
                patch("app.api.routes.health.check_redis_health", AsyncMock(return_value=True)):
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_redis_down_is_degraded(self, client):
        with patch("app.api.routes.health.check_db_health", AsyncMock(return_value=True)), \
                patch("app.api.routes.health.check_redis_health", AsyncMock(side_effect=OSError("refused"))):
            response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["redis"] == "error"

    @pytest.mark.asyncio
    async def test_database_down_is_not_ready(self, client):
        with patch("app.api.routes.health.check_db_health", AsyncMock(return_value=False)), \
                patch("app.api.routes.health.check_redis_health", AsyncMock(return_value=True)):
            response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] == "failed"
