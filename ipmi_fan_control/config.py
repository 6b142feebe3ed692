"""Configuration parsing from /etc/default/ipmi-fan-control and CLI arguments."""

import argparse
import logging
import math
import os
from dataclasses import dataclass

from dotenv import dotenv_values

from ipmi_fan_control.curve import FanCurve, parse_curve
from ipmi_fan_control.protocol import DEFAULT_PROTOCOL_KEY, available_protocols

DEFAULT_CONFIG_PATH = "/etc/default/ipmi-fan-control"
VALID_SENSORS = ("ipmi", "local")


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ipmi-fan-control",
        description="Temperature-driven server fan control over IPMI",
    )
    parser.add_argument("-H", "--host", help="The IPMI host to connect to")
    parser.add_argument("-u", "--user", help="The authentication username used to connect to the host")
    parser.add_argument("-p", "--password", help="The authentication password used to connect to the host")
    parser.add_argument("--interface", help="ipmitool interface (default: lanplus)")
    parser.add_argument(
        "-i", "--interval",
        type=float,
        help="The number of seconds between updates",
    )
    parser.add_argument(
        "-o", "--overheat-temperature",
        type=int,
        help="Temperature beyond which is considered unsafe for sustained periods, "
             "after which the sustained load fan curve may be activated",
    )
    parser.add_argument(
        "-m", "--max-temperature",
        type=int,
        help="The maximum allowable temperature, at which fan control is handed "
             "back to the BMC",
    )
    parser.add_argument(
        "-a", "--overheat-allowance",
        type=float,
        help="Seconds the CPU may stay above the overheat temperature before the "
             "sustained load fan curve is activated",
    )
    parser.add_argument(
        "-f", "--idle-fans",
        help="Fan curve under normal load as 'temp,speed' pairs separated by ';', "
             "e.g. '30,5;40,10;50,20'",
    )
    parser.add_argument(
        "-s", "--sustained-fans",
        help="Fan curve under sustained load, same format as --idle-fans "
             "(default: the idle curve)",
    )
    parser.add_argument(
        "--sensor",
        choices=VALID_SENSORS,
        help="Temperature source: BMC sensors over IPMI, or the local CPU",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Log level (overrides config file)",
    )
    parser.add_argument(
        "--protocol",
        help="BMC fan command set (see protocols.yaml)",
    )
    return parser.parse_args(argv)


@dataclass
class Config:
    """Daemon configuration."""

    idle_curve: str = ""
    sustained_curve: str | None = None
    host: str = "127.0.0.1"
    username: str | None = None
    password: str | None = None
    interface: str = "lanplus"
    poll_interval: float = 5.0
    overheat_temperature: int | None = None
    max_temperature: int = 70
    overheat_allowance: float = 900.0
    sensor: str = "ipmi"
    protocol: str = DEFAULT_PROTOCOL_KEY
    log_level: str = "INFO"
    debug: bool = False

    def __post_init__(self) -> None:
        if not self.idle_curve.strip():
            raise ValueError("No idle fan curve specified")

        if self.sustained_curve is not None and not self.sustained_curve.strip():
            self.sustained_curve = None

        # InvalidCurve is a ValueError
        parse_curve(self.idle_curve)
        if self.sustained_curve is not None:
            parse_curve(self.sustained_curve)

        if not (math.isfinite(self.poll_interval) and self.poll_interval > 0):
            raise ValueError(f"Poll interval must be positive, got {self.poll_interval}")

        if not (math.isfinite(self.overheat_allowance) and self.overheat_allowance >= 0):
            raise ValueError(
                f"Overheat allowance must be a non-negative number of seconds, "
                f"got {self.overheat_allowance}"
            )

        if self.sensor not in VALID_SENSORS:
            raise ValueError(
                f"Invalid sensor '{self.sensor}'. Must be one of: {', '.join(VALID_SENSORS)}"
            )

        valid_protocols = available_protocols()
        if self.protocol not in valid_protocols:
            raise ValueError(
                f"Unknown protocol '{self.protocol}'. "
                f"Available: {', '.join(sorted(valid_protocols))}"
            )

        if self.debug:
            self.log_level = "DEBUG"

    @property
    def idle_fan_curve(self) -> FanCurve:
        return parse_curve(self.idle_curve)

    @property
    def sustained_fan_curve(self) -> FanCurve:
        """The sustained load curve, defaulting to the idle curve."""
        if self.sustained_curve is not None:
            return parse_curve(self.sustained_curve)
        return self.idle_fan_curve

    @property
    def effective_overheat_temperature(self) -> int:
        if self.overheat_temperature is not None:
            return self.overheat_temperature
        return min(self.max_temperature, self.idle_fan_curve.max_temperature)

    @classmethod
    def load(cls, argv: list[str] | None = None) -> "Config":
        """Load configuration from environment file, env vars, and CLI args.

        Priority (highest to lowest):
        1. CLI arguments
        2. Environment variables (set by systemd EnvironmentFile)
        3. /etc/default/ipmi-fan-control file
        4. Dataclass defaults
        """
        file_env = {k: v for k, v in dotenv_values(DEFAULT_CONFIG_PATH).items() if v is not None}

        def env(key: str) -> str | None:
            if key in os.environ:
                return os.environ[key]
            return file_env.get(key)

        kwargs: dict[str, object] = {}

        for key, name in (
            ("IPMI_HOST", "host"),
            ("IPMI_USERNAME", "username"),
            ("IPMI_PASSWORD", "password"),
            ("IPMI_INTERFACE", "interface"),
            ("FAN_CURVE", "idle_curve"),
            ("SUSTAINED_FAN_CURVE", "sustained_curve"),
        ):
            if (v := env(key)) is not None:
                kwargs[name] = v

        for key, name, convert in (
            ("UPDATE_INTERVAL", "poll_interval", float),
            ("OVERHEAT_TEMPERATURE", "overheat_temperature", int),
            ("MAXIMUM_TEMPERATURE", "max_temperature", int),
            ("OVERHEAT_TIME", "overheat_allowance", float),
        ):
            if (v := env(key)) is not None:
                try:
                    kwargs[name] = convert(v)
                except ValueError:
                    pass

        if (v := env("TEMPERATURE_SOURCE")) is not None:
            kwargs["sensor"] = v.lower()

        if (v := env("LOG_LEVEL")) is not None:
            kwargs["log_level"] = v.upper()

        if (v := env("DEBUG")) is not None:
            kwargs["debug"] = v.lower() in ("true", "1", "yes")

        if (v := env("PROTOCOL")) is not None:
            kwargs["protocol"] = v.lower()

        # CLI arguments override everything
        args = _parse_cli_args(argv)

        for arg, name in (
            ("host", "host"),
            ("user", "username"),
            ("password", "password"),
            ("interface", "interface"),
            ("interval", "poll_interval"),
            ("overheat_temperature", "overheat_temperature"),
            ("max_temperature", "max_temperature"),
            ("overheat_allowance", "overheat_allowance"),
            ("idle_fans", "idle_curve"),
            ("sustained_fans", "sustained_curve"),
            ("sensor", "sensor"),
            ("log_level", "log_level"),
        ):
            if (v := getattr(args, arg)) is not None:
                kwargs[name] = v

        if args.debug is True:
            kwargs["debug"] = True

        if args.protocol is not None:
            kwargs["protocol"] = args.protocol.lower()

        return cls(**kwargs)

    def describe(self) -> str:
        """One-line summary for the startup log. Credentials are left out."""
        return (
            f"host={self.host}, sensor={self.sensor}, protocol={self.protocol}, "
            f"poll_interval={self.poll_interval:g}s, "
            f"overheat_temperature={self.effective_overheat_temperature}, "
            f"max_temperature={self.max_temperature}, "
            f"overheat_allowance={self.overheat_allowance:g}s, "
            f"idle_curve={self.idle_fan_curve}, sustained_curve={self.sustained_fan_curve}"
        )

    def setup_logging(self) -> None:
        """Configure logging based on this config."""
        logging.basicConfig(
            level=getattr(logging, self.log_level),
            format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
