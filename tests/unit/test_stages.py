"""Tests for stage computation, confidence, next actions and auto-reply gating."""

from datetime import datetime, timezone

import pytest

from app.channels.config import BusinessHours, ChannelInstanceConfig, DaySchedule
from app.core.conversation.models import ConversationStage, NextAction
from app.core.intelligence.entities.types import ExtractedEntities, PatientInfo, Urgency
from app.core.intelligence.intent.types import MessageIntent
from app.core.pipeline.gating import should_auto_reply
from app.core.pipeline.stages import (
    STAGE_BY_INTENT,
    calculate_confidence,
    compute_stage,
    determine_next_actions,
    resolve_stage,
)
from tests.fakes import CLOSED_TIME, OPEN_TIME


class TestComputeStage:
    """Stage transitions."""

    def test_every_intent_has_a_stage(self):
        assert set(STAGE_BY_INTENT) == set(MessageIntent)

    @pytest.mark.parametrize(
        "intent,expected",
        [
            (MessageIntent.GREETING, ConversationStage.GREETING_RESPONDED),
            (MessageIntent.EMERGENCY, ConversationStage.EMERGENCY_ESCALATED),
            (MessageIntent.APPOINTMENT_INQUIRY, ConversationStage.INQUIRY_PROCESSING),
            (MessageIntent.APPOINTMENT_CANCEL, ConversationStage.PROCESSING),
            (MessageIntent.APPOINTMENT_RESCHEDULE, ConversationStage.PROCESSING),
            (MessageIntent.GENERAL_INQUIRY, ConversationStage.PROCESSING),
            (MessageIntent.UNKNOWN, ConversationStage.PROCESSING),
        ],
    )
    def test_non_booking_intents(self, intent, expected):
        assert compute_stage(intent, ExtractedEntities()) == expected

    def test_booking_without_entities_needs_specialty(self):
        stage = compute_stage(MessageIntent.APPOINTMENT_BOOKING, ExtractedEntities())
        assert stage == ConversationStage.BOOKING_SPECIALTY_NEEDED

    def test_booking_with_specialty_needs_date(self):
        stage = compute_stage(
            MessageIntent.APPOINTMENT_BOOKING,
            ExtractedEntities(specialty="cardiología"),
        )
        assert stage == ConversationStage.BOOKING_DATE_NEEDED

    def test_booking_with_date_only_needs_specialty(self):
        stage = compute_stage(
            MessageIntent.APPOINTMENT_BOOKING,
            ExtractedEntities(date="2024-05-20"),
        )
        assert stage == ConversationStage.BOOKING_SPECIALTY_NEEDED

    def test_booking_ready(self):
        stage = compute_stage(
            MessageIntent.APPOINTMENT_BOOKING,
            ExtractedEntities(specialty="cardiología", date="2024-05-20"),
        )
        assert stage == ConversationStage.BOOKING_READY

    def test_emergency_is_sticky(self):
        assert resolve_stage(
            ConversationStage.EMERGENCY_ESCALATED,
            ConversationStage.GREETING_RESPONDED,
        ) == ConversationStage.EMERGENCY_ESCALATED

    def test_other_stages_follow_the_message(self):
        assert resolve_stage(
            ConversationStage.BOOKING_READY,
            ConversationStage.GREETING_RESPONDED,
        ) == ConversationStage.GREETING_RESPONDED


class TestConfidence:
    """Confidence scoring."""

    def test_unknown_without_entities(self):
        assert calculate_confidence(MessageIntent.UNKNOWN, ExtractedEntities()) == 0.5

    def test_known_intent_bonus(self):
        assert calculate_confidence(MessageIntent.GREETING, ExtractedEntities()) == 0.8

    def test_entity_bonus_is_capped(self):
        entities = ExtractedEntities(
            specialty="cardiología",
            date="2024-05-20",
            time="09:00",
            doctor_name="Dr. Ruiz",
            urgency=Urgency.HIGH,
            patient_info=PatientInfo(name="Ana"),
        )
        assert calculate_confidence(MessageIntent.APPOINTMENT_BOOKING, entities) == 1.0

    def test_single_entity(self):
        entities = ExtractedEntities(specialty="cardiología")
        assert calculate_confidence(MessageIntent.APPOINTMENT_BOOKING, entities) == 0.9

    @pytest.mark.parametrize("intent", list(MessageIntent))
    def test_always_in_range(self, intent):
        entities = ExtractedEntities(specialty="x", date="y", symptoms=["a", "b", "c"])
        assert 0.0 <= calculate_confidence(intent, entities) <= 1.0


class TestNextActions:
    """Follow-up actions."""

    def test_booking_missing_everything(self):
        actions = determine_next_actions(MessageIntent.APPOINTMENT_BOOKING, ExtractedEntities())
        assert actions == [NextAction.REQUEST_SPECIALTY, NextAction.REQUEST_DATE]

    def test_booking_ready_checks_availability(self):
        actions = determine_next_actions(
            MessageIntent.APPOINTMENT_BOOKING,
            ExtractedEntities(specialty="cardiología", date="2024-05-20"),
        )
        assert actions == [NextAction.CHECK_AVAILABILITY]

    def test_emergency(self):
        actions = determine_next_actions(MessageIntent.EMERGENCY, ExtractedEntities())
        assert actions == [NextAction.ESCALATE_TO_HUMAN, NextAction.PROVIDE_EMERGENCY_INFO]

    def test_inquiry(self):
        actions = determine_next_actions(MessageIntent.APPOINTMENT_INQUIRY, ExtractedEntities())
        assert actions == [NextAction.FETCH_APPOINTMENTS]

    def test_default(self):
        actions = determine_next_actions(MessageIntent.GREETING, ExtractedEntities())
        assert actions == [NextAction.CONTINUE_CONVERSATION]


def _hours(**overrides) -> BusinessHours:
    schedule = {
        day: DaySchedule(start="08:00", end="18:00")
        for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
    }
    options = {"enabled": True, "timezone": "America/Bogota", "schedule": schedule}
    options.update(overrides)
    return BusinessHours(**options)


class TestBusinessHours:
    """Opening-hours evaluation in the instance timezone."""

    def test_open_during_window(self):
        assert _hours().is_open(OPEN_TIME)

    def test_closed_in_the_evening(self):
        assert not _hours().is_open(CLOSED_TIME)

    def test_window_end_is_exclusive(self):
        # 18:00 Bogota
        assert not _hours().is_open(datetime(2024, 5, 15, 23, 0, tzinfo=timezone.utc))

    def test_missing_day_is_closed(self):
        # Saturday 10:00 Bogota
        assert not _hours().is_open(datetime(2024, 5, 18, 15, 0, tzinfo=timezone.utc))

    def test_disabled_day_is_closed(self):
        hours = _hours()
        hours.schedule["wednesday"] = DaySchedule(enabled=False)
        assert not hours.is_open(OPEN_TIME)

    def test_invalid_timezone_falls_back_to_utc(self):
        hours = _hours(timezone="Mars/Olympus")
        # 15:00 UTC is inside the window when read as UTC
        assert hours.is_open(OPEN_TIME)

    def test_naive_datetime_is_utc(self):
        assert _hours().is_open(datetime(2024, 5, 15, 15, 0))

    def test_from_dict(self):
        hours = BusinessHours.from_dict({
            "enabled": True,
            "timezone": "UTC",
            "schedule": {"Monday": {"start": "09:00", "end": "17:30"}},
        })
        assert hours.schedule["monday"].end == "17:30"
        assert hours.timezone == "UTC"

    @pytest.mark.parametrize("bad", ["8am", "25:00", "08:60", "", None])
    def test_from_dict_rejects_malformed_time(self, bad):
        with pytest.raises(ValueError):
            BusinessHours.from_dict({"schedule": {"monday": {"start": bad, "end": "17:00"}}})

    def test_from_dict_accepts_single_digit_hour(self):
        assert DaySchedule.from_dict({"start": "8:00", "end": "17:00"}).contains(8 * 60)


class TestShouldAutoReply:
    """Auto-reply gating rules."""

    def test_default_config_replies(self):
        assert should_auto_reply(
            MessageIntent.GREETING, ExtractedEntities(), ChannelInstanceConfig(), CLOSED_TIME
        )

    def test_emergency_ignores_business_hours(self):
        config = ChannelInstanceConfig(business_hours=_hours())
        assert should_auto_reply(MessageIntent.EMERGENCY, ExtractedEntities(), config, CLOSED_TIME)

    def test_closed_suppresses_reply(self):
        config = ChannelInstanceConfig(business_hours=_hours())
        assert not should_auto_reply(MessageIntent.GREETING, ExtractedEntities(), config, CLOSED_TIME)

    def test_open_allows_reply(self):
        config = ChannelInstanceConfig(business_hours=_hours())
        assert should_auto_reply(MessageIntent.GREETING, ExtractedEntities(), config, OPEN_TIME)

    def test_unknown_policy(self):
        config = ChannelInstanceConfig(respond_to_unknown_intent=False)
        assert not should_auto_reply(MessageIntent.UNKNOWN, ExtractedEntities(), config, OPEN_TIME)

    def test_unknown_with_actionable_entities(self):
        config = ChannelInstanceConfig(respond_to_unknown_intent=False)
        entities = ExtractedEntities(symptoms=["fiebre"])
        assert should_auto_reply(MessageIntent.UNKNOWN, entities, config, OPEN_TIME)

    def test_unknown_with_only_patient_info_is_not_actionable(self):
        config = ChannelInstanceConfig(respond_to_unknown_intent=False)
        entities = ExtractedEntities(patient_info=PatientInfo(name="Ana"))
        assert not should_auto_reply(MessageIntent.UNKNOWN, entities, config, OPEN_TIME)
