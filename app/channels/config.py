"""
Channel instance configuration.

Per-tenant settings the pipeline reads but never writes. They are loaded
from the JSON stored with each channel instance and passed explicitly into
every pipeline invocation.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.channels.types import ChannelType

logger = logging.getLogger(__name__)

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

_TIME = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


def _to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, _, minutes = value.strip().partition(":")
    return int(hours) * 60 + int(minutes or 0)


def _checked_time(value, field_name: str) -> str:
    if not isinstance(value, str) or not _TIME.match(value.strip()):
        raise ValueError(f"Invalid {field_name} time {value!r}, expected HH:MM")
    return value.strip()


@dataclass
class DaySchedule:
    """Opening window for one weekday."""

    start: str = "08:00"
    end: str = "18:00"
    enabled: bool = True

    def contains(self, minute_of_day: int) -> bool:
        """Check whether a minute of the day falls in [start, end)."""
        if not self.enabled:
            return False
        return _to_minutes(self.start) <= minute_of_day < _to_minutes(self.end)

    @classmethod
    def from_dict(cls, data: dict) -> "DaySchedule":
        return cls(
            start=_checked_time(data.get("start", "08:00"), "start"),
            end=_checked_time(data.get("end", "18:00"), "end"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class BusinessHours:
    """Weekly schedule with its timezone."""

    enabled: bool = False
    timezone: str = "America/Bogota"
    schedule: dict[str, DaySchedule] = field(default_factory=dict)

    def _zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{self.timezone}', using UTC")
            return ZoneInfo("UTC")

    def is_open(self, at: datetime) -> bool:
        """
        Check whether the instance is open at the given instant.

        A weekday with no schedule entry, or a disabled one, counts as closed.

        Args:
            at: Instant to check (naive values are taken as UTC)

        Returns:
            True if `at` falls inside today's window in the instance timezone
        """
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        local = at.astimezone(self._zone())
        today = self.schedule.get(WEEKDAYS[local.weekday()])
        if today is None:
            return False
        return today.contains(local.hour * 60 + local.minute)

    @classmethod
    def from_dict(cls, data: dict) -> "BusinessHours":
        schedule = {
            day.lower(): DaySchedule.from_dict(value)
            for day, value in (data.get("schedule") or {}).items()
        }
        return cls(
            enabled=bool(data.get("enabled", False)),
            timezone=data.get("timezone", "America/Bogota"),
            schedule=schedule,
        )


@dataclass
class AIConfig:
    """Model parameters used when composing free-text replies."""

    enabled: bool = True
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 500
    timeout_seconds: float = 10.0
    custom_prompt: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "AIConfig":
        return cls(
            enabled=bool(data.get("enabled", True)),
            model=data.get("model"),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 500)),
            timeout_seconds=float(data.get("timeout_seconds", 10.0)),
            custom_prompt=data.get("custom_prompt"),
        )


@dataclass
class WebhookConfig:
    """Inbound webhook settings."""

    secret: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "WebhookConfig":
        return cls(secret=data.get("secret") or None)


@dataclass
class ChannelInstanceConfig:
    """Behavioural settings of one channel instance."""

    auto_reply: bool = True
    respond_to_unknown_intent: bool = True
    business_hours: BusinessHours = field(default_factory=BusinessHours)
    ai_config: AIConfig = field(default_factory=AIConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelInstanceConfig":
        return cls(
            auto_reply=bool(data.get("auto_reply", True)),
            respond_to_unknown_intent=bool(data.get("respond_to_unknown_intent", True)),
            business_hours=BusinessHours.from_dict(data.get("business_hours") or {}),
            ai_config=AIConfig.from_dict(data.get("ai_config") or {}),
            webhook=WebhookConfig.from_dict(data.get("webhook") or {}),
        )


@dataclass
class ChannelInstance:
    """One configured messaging endpoint, owned by one organization."""

    id: str
    organization_id: str
    channel_type: ChannelType
    instance_name: str = ""
    config: ChannelInstanceConfig = field(default_factory=ChannelInstanceConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelInstance":
        return cls(
            id=str(data["id"]),
            organization_id=str(data["organization_id"]),
            channel_type=ChannelType(data.get("channel_type", "whatsapp")),
            instance_name=data.get("instance_name", ""),
            config=ChannelInstanceConfig.from_dict(data.get("config") or {}),
        )
