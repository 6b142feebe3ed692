"""Piecewise-linear fan curves."""

import math
from dataclasses import dataclass
from typing import Iterable

from ipmi_fan_control.errors import InvalidCurve

MIN_TEMPERATURE = 0
MAX_TEMPERATURE = 255


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value to [low, high]. NaN and +inf map to high, -inf to low."""
    if value == -math.inf:
        return low
    if math.isnan(value) or value == math.inf:
        return high
    return max(low, min(value, high))


def lerp(a: float, b: float, alpha: float) -> float:
    return a * (1 - alpha) + b * alpha


def ratio(numerator: float, denominator: float) -> float:
    """Float division that yields inf/nan on a zero denominator instead of raising."""
    if denominator == 0:
        if numerator == 0:
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


@dataclass(frozen=True)
class ControlPoint:
    """A single (temperature, speed) anchor of a fan curve."""

    temperature: int  # °C
    speed: float      # fan speed (%)

    def __post_init__(self) -> None:
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, int):
            raise InvalidCurve(
                f"Temperature must be a whole number of degrees, got {self.temperature!r}"
            )
        if isinstance(self.speed, bool) or not isinstance(self.speed, (int, float)):
            raise InvalidCurve(f"Speed must be a number, got {self.speed!r}")
        if not math.isfinite(self.speed):
            raise InvalidCurve(f"Speed must be finite, got {self.speed}")
        if not MIN_TEMPERATURE <= self.temperature <= MAX_TEMPERATURE:
            raise InvalidCurve(
                f"Temperature {self.temperature} out of range "
                f"{MIN_TEMPERATURE}-{MAX_TEMPERATURE}"
            )


@dataclass(frozen=True, init=False)
class FanCurve:
    """A fan curve defined by control points in strictly ascending temperature order.

    Between two points the speed is linearly interpolated. Below the first point
    the first speed applies, above the last point the last speed applies.
    """

    points: tuple[ControlPoint, ...]

    def __init__(self, points: Iterable[ControlPoint | tuple[int, float]]) -> None:
        converted = tuple(
            p if isinstance(p, ControlPoint) else ControlPoint(p[0], p[1])
            for p in points
        )
        if not converted:
            raise InvalidCurve("curve must contain at least one temperature")

        for prev, cur in zip(converted, converted[1:]):
            if prev.temperature >= cur.temperature:
                raise InvalidCurve("temperature thresholds in curve must be in ascending order")

        object.__setattr__(self, "points", converted)

    @property
    def max_temperature(self) -> int:
        return self.points[-1].temperature

    def evaluate(self, temperature: float) -> float:
        """Compute the fan speed for a given temperature."""
        for start, end in zip(self.points, self.points[1:]):
            if end.temperature < temperature:
                continue

            progress = 1 - clamp(
                (end.temperature - temperature) / (end.temperature - start.temperature), 0, 1
            )
            return lerp(start.speed, end.speed, progress)

        return self.points[-1].speed

    def __str__(self) -> str:
        return ";".join(f"{p.temperature},{p.speed:g}" for p in self.points)


def parse_curve(raw: str) -> FanCurve:
    """Parse a curve of the form '30,5;40,10;50,20'."""
    points = []
    for segment in raw.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        parts = [p.strip() for p in segment.split(",")]
        if len(parts) != 2:
            raise InvalidCurve(f"Invalid curve point '{segment}'. Expected 'temp,speed'")
        try:
            temperature, speed = int(parts[0]), float(parts[1])
        except ValueError as e:
            raise InvalidCurve(f"Invalid curve point '{segment}': {e}") from e
        points.append(ControlPoint(temperature, speed))
    return FanCurve(points)
