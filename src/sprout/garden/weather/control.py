"""
Weather-driven scaling of watering durations.

A ``ScaleControl`` turns one weather measurement into a multiplier for a
water schedule's duration. Two shapes are used:

    scale(x)                     temperature: symmetric around the baseline
    ───────────────────────────  ────────────────────────────────────────────
      1 + factor ┤        ┌────   hotter than baseline waters longer, up to
                 │      ╱         1 + factor; cooler waters shorter, down to
               1 ┤────●           1 - factor. Inputs beyond ``range`` from the
                 │  ╱             baseline saturate.
      1 - factor ┤╱
                  baseline

    inverted_scale_down_only(x)  rain: only ever reduces watering
    ───────────────────────────  ────────────────────────────────────────────
               1 ┤────●           below the baseline nothing changes; above
                 │      ╲         it the multiplier falls linearly to
          factor ┤        └────   ``factor`` at baseline + range.
                  baseline

Example (baseline 90, factor 0.5, range 30, 30m schedule):
    - 100 degrees: (100 - 90) / 30 * 0.5 + 1 = 1.1667 => water 35m
    - 130 degrees: clamped to 1.5 => water 45m
    -  60 degrees: 0.5 => water 15m
"""

from __future__ import annotations

from dataclasses import dataclass

from sprout.core.errors import ValidationError


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


@dataclass
class ScaleControl:
    """Baseline/factor/range configuration for one weather measurement.

    Attributes:
        baseline_value: Measurement at which no scaling happens
        factor: Maximum proportional change, between 0 and 1
        range: Distance from the baseline at which scaling saturates
        client_id: Weather client that supplies the measurement
    """

    baseline_value: float | None = None
    factor: float | None = None
    range: float | None = None
    client_id: str | None = None

    def validate(self) -> None:
        """Reject incomplete or out-of-range configuration."""
        if self.baseline_value is None:
            raise ValidationError("missing required field: baseline_value", field="baseline_value")
        if self.factor is None:
            raise ValidationError("missing required field: factor", field="factor")
        if not 0 <= self.factor <= 1:
            raise ValidationError(
                "factor must be between 0 and 1", field="factor", value=self.factor
            )
        if self.range is None:
            raise ValidationError("missing required field: range", field="range")
        if self.range <= 0:
            raise ValidationError("range must be a positive number", field="range", value=self.range)
        if not self.client_id:
            raise ValidationError("missing required field: client_id", field="client_id")

    def scale(self, actual_value: float) -> float:
        """Symmetric multiplier in ``[1 - factor, 1 + factor]``."""
        diff = _clamp(actual_value - self.baseline_value, -self.range, self.range)
        return (diff / self.range) * self.factor + 1

    def inverted_scale_down_only(self, actual_value: float) -> float:
        """Reducing multiplier in ``[factor, 1]``; 1 at or below the baseline."""
        if actual_value <= self.baseline_value:
            return 1.0
        diff = _clamp(actual_value - self.baseline_value, 0, self.range)
        return 1 - (diff / self.range) * (1 - self.factor)


@dataclass
class WeatherControl:
    """Optional rain and temperature scaling for a water schedule."""

    rain: ScaleControl | None = None
    temperature: ScaleControl | None = None

    def validate(self) -> None:
        for name, control in (("rain_control", self.rain), ("temperature_control", self.temperature)):
            if control is None:
                continue
            try:
                control.validate()
            except ValidationError as err:
                raise ValidationError(
                    f"error validating {name}: {err.message}",
                    field=f"{name}.{err.field}" if err.field else name,
                    value=err.value,
                    cause=err,
                ) from err

    @property
    def client_ids(self) -> set[str]:
        return {
            control.client_id
            for control in (self.rain, self.temperature)
            if control is not None and control.client_id
        }


__all__ = ["ScaleControl", "WeatherControl"]
