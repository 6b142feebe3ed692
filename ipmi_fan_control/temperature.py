"""Local CPU temperature source via psutil.

Used instead of the BMC sensors when the daemon runs on the machine it cools.
"""

import logging

import psutil

from ipmi_fan_control.errors import SensorReadError

log = logging.getLogger(__name__)

# Package/die labels, most specific first
PACKAGE_LABELS = ("Package id 0", "Tctl", "Tdie", "CPU")

CPU_DRIVERS = ("coretemp", "k10temp", "zenpower")


class LocalSensor:
    """Reads the CPU package temperature from the local hwmon drivers.

    Falls back to the hottest CPU driver reading, then to the hottest reading
    of any driver.
    """

    def __init__(
        self,
        labels: tuple[str, ...] = PACKAGE_LABELS,
        drivers: tuple[str, ...] = CPU_DRIVERS,
    ) -> None:
        self._labels = labels
        self._drivers = drivers

    def read_temperature(self) -> int:
        """Return the CPU temperature rounded to whole degrees.

        Raises SensorReadError if no sensor reports a positive temperature.
        """
        try:
            groups = psutil.sensors_temperatures()
        except (AttributeError, OSError) as e:
            raise SensorReadError(f"Temperature sensors unavailable: {e}") from e

        readings = {
            driver: [e for e in entries if e.current > 0]
            for driver, entries in (groups or {}).items()
        }

        for label in self._labels:
            for entries in readings.values():
                for entry in entries:
                    if entry.label == label:
                        log.debug("Using %s sensor", label)
                        return round(entry.current)

        for driver in self._drivers:
            if readings.get(driver):
                return round(max(e.current for e in readings[driver]))

        everything = [e.current for entries in readings.values() for e in entries]
        if not everything:
            raise SensorReadError("No CPU temperature sensor found")
        return round(max(everything))
