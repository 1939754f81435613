"""Serial force/torque sensor acquisition."""

from .dynpick import DynPick, dynpick_sensor
from .errors import FailureKind, ForceSensorError, MalformedCalibrationError, MalformedFrameError
from .sensor import ForceSensor, Measurement, RawFrame, SensorCommand, SensorState, SensorVariant
from .serial_port import PortState, SerialConfig, SerialPort

__all__ = [
    "DynPick",
    "FailureKind",
    "ForceSensor",
    "ForceSensorError",
    "MalformedCalibrationError",
    "MalformedFrameError",
    "Measurement",
    "PortState",
    "RawFrame",
    "SensorCommand",
    "SensorState",
    "SensorVariant",
    "SerialConfig",
    "SerialPort",
    "dynpick_sensor",
]
