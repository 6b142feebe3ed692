"""Main daemon entry point: temperature polling and fan speed control loop."""

import logging
import signal
import sys
import time
from typing import Callable

from ipmi_fan_control.config import Config
from ipmi_fan_control.controller import FanController
from ipmi_fan_control.errors import ActuatorError, InvalidConfiguration, SensorReadError
from ipmi_fan_control.ipmi import IpmiClient
from ipmi_fan_control.protocol import load_protocol
from ipmi_fan_control.temperature import LocalSensor

log = logging.getLogger(__name__)

# Consecutive failed cycles after which fan control is handed back to the BMC.
FAILURE_RELEASE_THRESHOLD = 3


def _build_client(config: Config) -> IpmiClient:
    return IpmiClient(
        load_protocol(config.protocol),
        config.host,
        config.username,
        config.password,
        config.interface,
    )


def _connection(config: Config) -> tuple:
    return (config.protocol, config.host, config.username, config.password, config.interface)


def _build_sensor(config: Config, fan: IpmiClient) -> IpmiClient | LocalSensor:
    return LocalSensor() if config.sensor == "local" else fan


def build_controller(config: Config, clock: Callable[[], float]) -> FanController:
    return FanController(
        config.idle_fan_curve,
        config.sustained_fan_curve,
        config.effective_overheat_temperature,
        config.max_temperature,
        config.overheat_allowance,
        clock=clock,
    )


class Daemon:
    """Main daemon that ties together temperature reading, the controller, and IPMI."""

    def __init__(
        self,
        config: Config,
        sensor: IpmiClient | LocalSensor | None = None,
        fan: IpmiClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        argv: list[str] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        # Command-line overrides are re-applied on every reload
        self._argv = list(argv) if argv is not None else []
        self._owns_fan = fan is None
        self._owns_sensor = sensor is None
        self._fan = fan or _build_client(config)
        self._sensor = sensor or _build_sensor(config, self._fan)
        self._controller = build_controller(config, clock)
        self._failures = 0
        self._running = True
        self._reload_requested = False

    @property
    def controller(self) -> FanController:
        return self._controller

    def _on_shutdown(self, signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("Received %s, shutting down", sig_name)
        self._running = False

    def _on_reload(self, _signum: int, _frame: object) -> None:
        log.info("Received SIGHUP, reloading configuration at the next cycle")
        self._reload_requested = True

    def _reload(self) -> None:
        self._reload_requested = False
        try:
            config = Config.load(self._argv)
            controller = build_controller(config, self._clock)
            fan = self._fan
            if self._owns_fan and _connection(config) != _connection(self._config):
                fan = _build_client(config)
        except (ValueError, KeyError, SystemExit) as e:
            log.error("Failed to reload configuration: %s", e)
            return

        if fan is not self._fan:
            # The old client may still hold manual control on a different BMC
            self._release()
            self._fan = fan
        if self._owns_sensor:
            self._sensor = _build_sensor(config, self._fan)
        self._config = config
        self._controller = controller
        log.info("Configuration reloaded: %s", config.describe())

    def _release(self) -> None:
        """Hand fan control back to the BMC, logging rather than raising on failure."""
        try:
            self._fan.release_manual_control()
        except ActuatorError as e:
            log.error("Failed to release fan control: %s", e)

    def cycle(self) -> None:
        """Run one read/evaluate/actuate step."""
        try:
            reading = self._sensor.read_temperature()
            self._controller.push_reading(self._clock(), reading)

            is_safe, speed = self._controller.evaluate()
            if is_safe:
                log.info(
                    "Temperature %d°C → fan speed %.0f%% (%s)",
                    reading, speed, self._controller.current_mode.value,
                )
                self._fan.set_fan_speed(speed)
            else:
                log.warning(
                    "Temperature above %d°C, handing fan control back to the BMC",
                    self._controller.max_temperature,
                )
                self._fan.release_manual_control()

            self._failures = 0
        except (SensorReadError, ActuatorError) as e:
            self._failures += 1
            log.warning("Control cycle failed (%d in a row): %s", self._failures, e)

            if self._failures >= FAILURE_RELEASE_THRESHOLD:
                self._release()

    def stop(self) -> None:
        self._running = False

    def _wait(self, seconds: float) -> None:
        """Sleep in small increments so we can respond to signals promptly."""
        end = time.monotonic() + seconds
        while self._running and time.monotonic() < end:
            time.sleep(min(0.5, end - time.monotonic()))

    def run(self) -> None:
        """Main loop: read temperature, compute speed, send to the BMC.

        Fan control is always handed back to the BMC on the way out.
        """
        log.info("Starting daemon with %s", self._config.describe())

        signal.signal(signal.SIGTERM, self._on_shutdown)
        signal.signal(signal.SIGINT, self._on_shutdown)
        signal.signal(signal.SIGHUP, self._on_reload)

        try:
            self._fan.authenticate()

            while self._running:
                if self._reload_requested:
                    self._reload()
                self.cycle()
                self._wait(self._config.poll_interval)
        finally:
            self._release()
            log.info("Daemon stopped")


def main() -> None:
    """Entry point."""
    argv = sys.argv[1:]
    try:
        config = Config.load(argv)
    except SystemExit as e:
        if e.code in (0, None):
            raise
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    config.setup_logging()
    try:
        daemon = Daemon(config, argv=argv)
    except InvalidConfiguration as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        daemon.run()
    except SensorReadError as e:
        log.error("Could not reach the BMC: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
