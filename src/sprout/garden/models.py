"""
Garden domain records.

Gardens own a light schedule; water schedules are standalone records that
zones point at. Every persisted record carries a schema ``version`` for
the migration chains in ``sprout.garden.storage`` and exposes
``get_version``/``set_version`` for them.

Tags:
    models, dataclasses, garden, light-schedule, water-schedule, history
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta, tzinfo
from enum import Enum

from sprout.core.errors import ValidationError
from sprout.core.timestamps import ensure_utc, generate_ulid, utc_now
from sprout.garden.weather.control import WeatherControl

LIGHT_INTERVAL = timedelta(hours=24)
_START_TIME_FORMATS = ("%H:%M:%S%z", "%H:%M%z")


class VersionedRecord:
    """Mixin giving a dataclass with a ``version`` field the migration capabilities."""

    version: int

    def get_version(self) -> int:
        return self.version

    def set_version(self, version: int) -> None:
        self.version = version


def _end_dated(end_date: datetime | None, now: datetime | None) -> bool:
    if end_date is None:
        return False
    return ensure_utc(end_date) <= (now or utc_now())


# =============================================================================
# LIGHTING
# =============================================================================


class LightState(str, Enum):
    ON = "ON"
    OFF = "OFF"
    TOGGLE = "TOGGLE"

    @classmethod
    def parse(cls, value: str | LightState) -> LightState:
        if isinstance(value, LightState):
            return value
        normalized = (value or "").strip().upper()
        if normalized == "":
            return cls.TOGGLE
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"invalid light state {value!r}", field="state", value=value
            ) from None


@dataclass(frozen=True)
class StartTime:
    """Time of day with a UTC offset, no date component."""

    value: time

    def __post_init__(self) -> None:
        if self.value.tzinfo is None:
            object.__setattr__(self, "value", self.value.replace(tzinfo=UTC))

    @classmethod
    def parse(cls, text: str) -> StartTime:
        """Parse ``HH:MM:SS±HH:MM`` (``Z`` accepted for UTC)."""
        for fmt in _START_TIME_FORMATS:
            try:
                parsed = datetime.strptime(text.strip(), fmt)
            except ValueError:
                continue
            return cls(parsed.timetz())
        raise ValidationError(
            f"invalid start time {text!r}, expected HH:MM:SS±HH:MM",
            field="start_time",
            value=text,
        )

    @property
    def tzinfo(self) -> tzinfo:
        return self.value.tzinfo

    def on_date(self, moment: datetime) -> datetime:
        """The absolute (UTC) instant of this time of day on ``moment``'s local date."""
        local_day = ensure_utc(moment).astimezone(self.tzinfo).date()
        return datetime.combine(local_day, self.value).astimezone(UTC)

    def __str__(self) -> str:
        offset = self.value.strftime("%z")
        if offset in ("", "+0000"):
            return self.value.strftime("%H:%M:%S") + "Z"
        return self.value.strftime("%H:%M:%S") + f"{offset[:3]}:{offset[3:]}"


@dataclass
class LightSchedule:
    """Daily ON/OFF cycle for a garden's light.

    ``adhoc_on_time`` overrides the next ON transition once and is cleared
    when consumed or found in the past.
    """

    duration: timedelta
    start_time: StartTime
    adhoc_on_time: datetime | None = None

    def validate(self) -> None:
        if self.duration <= timedelta(0):
            raise ValidationError(
                "light_schedule duration must be positive", field="duration", value=self.duration
            )
        if self.duration >= LIGHT_INTERVAL:
            raise ValidationError(
                "light_schedule duration must be less than 24h", field="duration", value=self.duration
            )


@dataclass
class LightAction:
    """One-shot light request. ``for_duration`` is only meaningful with OFF."""

    state: LightState
    for_duration: timedelta | None = None

    def __post_init__(self) -> None:
        self.state = LightState.parse(self.state)


@dataclass
class Garden(VersionedRecord):
    name: str
    topic_prefix: str
    id: str = field(default_factory=generate_ulid)
    max_zones: int | None = None
    light_schedule: LightSchedule | None = None
    created_at: datetime = field(default_factory=utc_now)
    end_date: datetime | None = None
    version: int = 0

    def end_dated(self, now: datetime | None = None) -> bool:
        return _end_dated(self.end_date, now)

    def has_light_schedule(self) -> bool:
        return self.light_schedule is not None

    def validate(self) -> None:
        if not self.name:
            raise ValidationError("missing required field: name", field="name")
        if not self.topic_prefix:
            raise ValidationError("missing required field: topic_prefix", field="topic_prefix")
        if self.light_schedule is not None:
            self.light_schedule.validate()


@dataclass
class Zone(VersionedRecord):
    garden_id: str
    name: str
    position: int
    id: str = field(default_factory=generate_ulid)
    water_schedule_ids: list[str] = field(default_factory=list)
    skip_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    end_date: datetime | None = None
    version: int = 0

    def end_dated(self, now: datetime | None = None) -> bool:
        return _end_dated(self.end_date, now)


# =============================================================================
# WATERING
# =============================================================================


def _parse_month(value: str, field_name: str) -> int:
    names = {name.lower(): number for number, name in enumerate(calendar.month_name) if name}
    month = names.get((value or "").strip().lower())
    if month is None:
        raise ValidationError(f"invalid {field_name}: {value!r}", field=field_name, value=value)
    return month


@dataclass
class ActivePeriod:
    """Inclusive range of months (``"March"`` .. ``"October"``) a schedule waters in.

    A start month after the end month wraps across the new year.
    """

    start_month: str
    end_month: str

    def validate(self) -> None:
        _parse_month(self.start_month, "start_month")
        _parse_month(self.end_month, "end_month")

    def is_active(self, at: datetime) -> bool:
        start = _parse_month(self.start_month, "start_month")
        end = _parse_month(self.end_month, "end_month")
        month = at.month
        if start <= end:
            return start <= month <= end
        return month >= start or month <= end


@dataclass
class WaterSchedule(VersionedRecord):
    """Recurring watering anchored at ``start_time`` every ``interval``."""

    duration: timedelta
    interval: timedelta
    start_time: datetime
    id: str = field(default_factory=generate_ulid)
    name: str = ""
    description: str = ""
    end_date: datetime | None = None
    weather_control: WeatherControl | None = None
    active_period: ActivePeriod | None = None
    version: int = 0

    def end_dated(self, now: datetime | None = None) -> bool:
        return _end_dated(self.end_date, now)

    def is_active(self, now: datetime | None = None) -> bool:
        """True when ``now`` falls inside the active period (or none is set)."""
        if self.active_period is None:
            return True
        return self.active_period.is_active(now or utc_now())

    def has_weather_control(self) -> bool:
        return self.weather_control is not None and (
            self.weather_control.rain is not None or self.weather_control.temperature is not None
        )

    def validate(self) -> None:
        if self.duration < timedelta(0):
            raise ValidationError("duration must not be negative", field="duration", value=self.duration)
        if self.interval <= timedelta(0):
            raise ValidationError("interval must be positive", field="interval", value=self.interval)
        if self.weather_control is not None:
            self.weather_control.validate()
        if self.active_period is not None:
            self.active_period.validate()


# =============================================================================
# HISTORY
# =============================================================================


class WaterStatus(str, Enum):
    SENT = "sent"
    STARTED = "start"
    COMPLETED = "complete"


@dataclass(frozen=True)
class WaterHistory:
    """One controller report about a watering event."""

    duration: timedelta
    event_id: str
    status: WaterStatus
    sent_at: datetime
    source: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ProgressAnomaly(str, Enum):
    """Inconsistencies found while reducing a watering history."""

    ELAPSED_EXCEEDS_DURATION = "elapsed time is longer than duration"
    SENT_BUT_NOT_STARTED = "water event was sent but not started"


@dataclass
class WaterHistoryProgress:
    """Live view of the current watering, recomputed on every read."""

    duration: timedelta = timedelta(0)
    elapsed: timedelta = timedelta(0)
    progress: float = 0.0
    queue: int = 0
    error: ProgressAnomaly | None = None


__all__ = [
    "LIGHT_INTERVAL",
    "ActivePeriod",
    "Garden",
    "LightAction",
    "LightSchedule",
    "LightState",
    "ProgressAnomaly",
    "StartTime",
    "VersionedRecord",
    "WaterHistory",
    "WaterHistoryProgress",
    "WaterSchedule",
    "WaterStatus",
    "Zone",
]
