"""IPMI raw command sets for BMC fan control.

Each Protocol instance holds the raw commands a specific BMC vendor uses to
switch between manual and automatic fan control and to set a fan speed.
Protocol data is loaded from protocols.yaml; the active protocol is selected
by name via the PROTOCOL config parameter.
"""

from dataclasses import dataclass
from pathlib import Path

import yaml

_PROTOCOLS_FILE = Path(__file__).parent / "protocols.yaml"

DEFAULT_PROTOCOL_KEY = "dell-idrac"


@dataclass(frozen=True)
class Protocol:
    """Raw IPMI command definitions for a BMC model."""

    name: str
    manual_command: tuple[int, ...]
    auto_command: tuple[int, ...]
    speed_command: tuple[int, ...]

    @staticmethod
    def speed_to_byte(speed_percent: float) -> int:
        """Convert a speed percentage to the byte sent to the BMC (0-100)."""
        return int(max(0.0, min(100.0, speed_percent)))

    def build_manual(self) -> list[str]:
        """Build the raw command that takes fan control away from the firmware."""
        return _raw(self.manual_command)

    def build_auto(self) -> list[str]:
        """Build the raw command that hands fan control back to the firmware."""
        return _raw(self.auto_command)

    def build_speed(self, speed_percent: float) -> list[str]:
        """Build the raw command setting all fans to a speed."""
        return _raw((*self.speed_command, self.speed_to_byte(speed_percent)))


def _raw(data: tuple[int, ...]) -> list[str]:
    return ["raw", *(f"0x{b:02x}" for b in data)]


def _load_all() -> dict[str, dict]:
    """Load raw protocol definitions from YAML."""
    with open(_PROTOCOLS_FILE) as f:
        return yaml.safe_load(f)


def available_protocols() -> list[str]:
    """Return the list of available protocol keys."""
    return list(_load_all().keys())


def load_protocol(key: str) -> Protocol:
    """Load a Protocol instance by key from protocols.yaml.

    Raises KeyError if the key is not found.
    """
    protocols = _load_all()
    if key not in protocols:
        available = ", ".join(sorted(protocols.keys()))
        raise KeyError(f"Unknown protocol '{key}'. Available: {available}")
    raw = protocols[key]
    return Protocol(
        name=raw["name"],
        manual_command=tuple(raw["manual_command"]),
        auto_command=tuple(raw["auto_command"]),
        speed_command=tuple(raw["speed_command"]),
    )
