"""Weather client that returns configured data.

Meant for staging environments and integration tests where a real station
is not available; unit tests should prefer a ``MagicMock``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sprout.core.errors import ValidationError


@dataclass
class FakeWeatherClient:
    """Reports ``rain_mm`` per ``rain_interval`` and a fixed average high."""

    rain_mm: float = 0.0
    rain_interval: timedelta = timedelta(hours=24)
    avg_high_temperature: float = 0.0

    def __post_init__(self) -> None:
        if self.rain_interval <= timedelta(0):
            raise ValidationError(
                "rain_interval must be positive", field="rain_interval", value=self.rain_interval
            )

    @classmethod
    def from_options(cls, options: dict) -> FakeWeatherClient:
        """Build from a config mapping (``rain_interval`` in seconds or a timedelta)."""
        interval = options.get("rain_interval", timedelta(hours=24))
        if not isinstance(interval, timedelta):
            interval = timedelta(seconds=float(interval))
        return cls(
            rain_mm=float(options.get("rain_mm", 0.0)),
            rain_interval=interval,
            avg_high_temperature=float(options.get("avg_high_temperature", 0.0)),
        )

    def get_total_rain(self, since: timedelta) -> float:
        return (since / self.rain_interval) * self.rain_mm

    def get_average_high_temperature(self, since: timedelta) -> float:
        return self.avg_high_temperature


__all__ = ["FakeWeatherClient"]
