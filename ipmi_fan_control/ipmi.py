"""BMC temperature reading and fan control through the ipmitool CLI."""

import logging
import os
import re
import subprocess

from ipmi_fan_control.errors import ActuatorError, SensorReadError
from ipmi_fan_control.protocol import Protocol

log = logging.getLogger(__name__)

IPMITOOL = "ipmitool"
COMMAND_TIMEOUT = 30.0  # seconds

_TEMPERATURE_RE = re.compile(r"\s(?P<temp>\d+) degrees C$", re.MULTILINE)


class IpmiClient:
    """Talks to a BMC over IPMI.

    Protocol-agnostic: the raw fan commands are taken from the Protocol.
    """

    def __init__(
        self,
        protocol: Protocol,
        host: str,
        username: str | None = None,
        password: str | None = None,
        interface: str = "lanplus",
    ) -> None:
        self._protocol = protocol
        self._host = host
        self._username = username
        self._password = password
        self._interface = interface

    def _command(self, args: list[str]) -> list[str]:
        cmd = [IPMITOOL, "-I", self._interface, "-H", self._host]
        if self._username is not None:
            cmd += ["-U", self._username]
        if self._password is not None:
            cmd.append("-E")
        return cmd + args

    def _run(self, args: list[str]) -> str:
        """Run ipmitool and return its stdout. Raises OSError on failure."""
        env = None
        if self._password is not None:
            env = {**os.environ, "IPMI_PASSWORD": self._password}

        try:
            result = subprocess.run(
                self._command(args),
                capture_output=True,
                text=True,
                check=False,
                timeout=COMMAND_TIMEOUT,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise OSError(f"ipmitool timed out after {COMMAND_TIMEOUT:.0f}s") from e

        if result.stderr.strip():
            log.debug("ipmitool stderr: %s", result.stderr.strip())
        if result.returncode != 0:
            raise OSError(f"ipmitool exited with code {result.returncode}")
        return result.stdout

    def authenticate(self) -> None:
        """Check that the BMC is reachable with the configured credentials."""
        self.read_temperature()
        log.info("Connected to %s at %s", self._protocol.name, self._host)

    def read_temperature(self) -> int:
        """Return the highest temperature reported by the BMC sensors.

        Raises SensorReadError if ipmitool fails or reports no temperature.
        """
        try:
            output = self._run(["sdr", "type", "temperature"])
        except OSError as e:
            raise SensorReadError(f"Temperature read failed: {e}") from e

        temps = [int(m.group("temp")) for m in _TEMPERATURE_RE.finditer(output)]
        if not temps:
            raise SensorReadError("No temperature sensors found in ipmitool output")
        return max(temps)

    def engage_manual_control(self) -> None:
        self._send(self._protocol.build_manual())

    def release_manual_control(self) -> None:
        """Hand fan control back to the BMC firmware."""
        log.info("Releasing fan speed control")
        self._send(self._protocol.build_auto())

    def set_fan_speed(self, speed_percent: float) -> None:
        """Set all fans to speed_percent, taking manual control first.

        Raises ActuatorError if either command fails.
        """
        log.debug(
            "Setting fan speed: %.1f%% (byte value: %d)",
            speed_percent, self._protocol.speed_to_byte(speed_percent),
        )
        self.engage_manual_control()
        self._send(self._protocol.build_speed(speed_percent))

    def _send(self, args: list[str]) -> None:
        try:
            self._run(args)
        except OSError as e:
            raise ActuatorError(f"Fan command '{' '.join(args)}' failed: {e}") from e
