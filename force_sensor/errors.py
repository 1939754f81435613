"""Failure taxonomy shared by the transport, the sensor and its variants."""

from __future__ import annotations

from enum import Enum


class FailureKind(Enum):
    NOT_OPEN = "not_open"
    DEVICE_UNAVAILABLE = "device_unavailable"
    SHORT_OR_FAILED_READ = "short_or_failed_read"
    WRITE_REJECTED = "write_rejected"
    UNKNOWN_COMMAND = "unknown_command"
    MALFORMED_FRAME = "malformed_frame"
    MALFORMED_CALIBRATION = "malformed_calibration"
    RETRIES_EXHAUSTED = "retries_exhausted"


class ForceSensorError(RuntimeError):
    """Base error for frame decoding issues."""

    kind: FailureKind = FailureKind.MALFORMED_FRAME


class MalformedFrameError(ForceSensorError):
    """Raised when a data frame has the wrong shape or content."""

    kind = FailureKind.MALFORMED_FRAME


class MalformedCalibrationError(ForceSensorError):
    """Raised when a calibration frame cannot be turned into six divisors."""

    kind = FailureKind.MALFORMED_CALIBRATION
