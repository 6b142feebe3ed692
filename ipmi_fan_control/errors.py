"""Exception types shared across the fan controller."""


class InvalidConfiguration(ValueError):
    """Controller parameters that cannot produce a working control loop."""


class InvalidCurve(InvalidConfiguration):
    """Fan curve control points are empty, malformed, or out of order."""


class SensorReadError(OSError):
    """A temperature reading could not be obtained."""


class ActuatorError(OSError):
    """A fan command was rejected or could not be delivered."""
