"""Two-mode fan controller with overheat hysteresis."""

import logging
import math
import time
from enum import Enum
from typing import Callable, Iterable

from ipmi_fan_control.curve import MAX_TEMPERATURE, MIN_TEMPERATURE, FanCurve, clamp, ratio
from ipmi_fan_control.errors import InvalidConfiguration
from ipmi_fan_control.history import TemperatureHistory

log = logging.getLogger(__name__)

# Window (seconds) over which the peak temperature drives the curve.
PEAK_WINDOW = 15.0

# Escalate to sustained load when more than this share of recent readings overheat,
# and relax back to idling when fewer than RELAX_FRACTION do. The gap between the
# two keeps the mode from flapping around the threshold.
ESCALATE_FRACTION = 0.9
RELAX_FRACTION = 0.1


class Mode(Enum):
    IDLING = "idling"
    SUSTAINED_LOAD = "sustained-load"


def _as_curve(curve: FanCurve | Iterable[tuple[int, float]]) -> FanCurve:
    return curve if isinstance(curve, FanCurve) else FanCurve(curve)


class FanController:
    """Maps recent temperature history to a fan speed.

    Under normal load the idle curve applies. Once the temperature stays above
    the overheat threshold for most of the allowance window, the controller
    switches to the sustained curve until the machine has cooled down for most
    of a full allowance window. The hotter the recent peak, the shorter the
    overheat allowance before switching.

    Starts in SUSTAINED_LOAD until the history shows otherwise.
    """

    def __init__(
        self,
        idle_curve: FanCurve | Iterable[tuple[int, float]],
        sustained_curve: FanCurve | Iterable[tuple[int, float]],
        overheat_threshold: int | None,
        max_temperature: int,
        max_overheat_allowance: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._idle_curve = _as_curve(idle_curve)
        self._sustained_curve = _as_curve(sustained_curve)

        if overheat_threshold is None:
            overheat_threshold = self._idle_curve.max_temperature
        if not MIN_TEMPERATURE <= overheat_threshold <= MAX_TEMPERATURE:
            raise InvalidConfiguration(
                f"Overheat threshold must be {MIN_TEMPERATURE}-{MAX_TEMPERATURE}, "
                f"got {overheat_threshold}"
            )
        if not (math.isfinite(max_overheat_allowance) and max_overheat_allowance >= 0):
            raise InvalidConfiguration(
                f"Overheat allowance must be a non-negative number of seconds, "
                f"got {max_overheat_allowance}"
            )

        self._overheat_threshold = overheat_threshold
        self._max_temperature = max(max_temperature, overheat_threshold)
        self._max_overheat_allowance = max_overheat_allowance
        self._history = TemperatureHistory(max(PEAK_WINDOW, max_overheat_allowance), clock)
        self._mode = Mode.SUSTAINED_LOAD

    @property
    def current_mode(self) -> Mode:
        return self._mode

    @property
    def overheat_threshold(self) -> int:
        return self._overheat_threshold

    @property
    def max_temperature(self) -> int:
        return self._max_temperature

    @property
    def history(self) -> TemperatureHistory:
        return self._history

    def push_reading(self, timestamp: float, temperature: int) -> None:
        log.debug("Measuring %d°C", temperature)
        self._history.push(timestamp, temperature)

    def evaluate(self) -> tuple[bool, float]:
        """Update the mode from recent history and compute the target speed.

        Returns (is_safe, speed). is_safe is False when the recent peak exceeds
        the maximum temperature; the caller should then hand control back to
        the firmware instead of applying the speed.
        """
        temp = self._history.recent_maximum(PEAK_WINDOW)

        if self._mode is Mode.IDLING:
            overheat_alpha = clamp(
                ratio(
                    self._max_temperature - temp,
                    self._max_temperature - self._overheat_threshold,
                ),
                0,
                1,
            )
            allowance = self._max_overheat_allowance * overheat_alpha
            overheated = self._history.recent_percent_over_threshold(
                allowance, self._overheat_threshold
            )
            if overheated > ESCALATE_FRACTION:
                self._switch(Mode.SUSTAINED_LOAD, temp, overheated)
        else:
            overheated = self._history.recent_percent_over_threshold(
                self._max_overheat_allowance, self._overheat_threshold
            )
            if overheated < RELAX_FRACTION:
                self._switch(Mode.IDLING, temp, overheated)

        curve = self._idle_curve if self._mode is Mode.IDLING else self._sustained_curve
        return temp <= self._max_temperature, curve.evaluate(temp)

    def _switch(self, mode: Mode, temp: int, overheated: float) -> None:
        log.info(
            "Switching to %s mode (peak %d°C, %.0f%% of readings above %d°C)",
            mode.value, temp, overheated * 100, self._overheat_threshold,
        )
        self._mode = mode
