"""DynPick 6-axis force sensor over a serial line.

Data frame (27 bytes)::

    +--------+-----+-----+-----+-----+-----+-----+--------+
    | record | Fx  | Fy  | Fz  | Tx  | Ty  | Tz  | \\r\\n   |
    | 1 byte | 4 hex digits per axis               | 2 bytes|
    +--------+-----+-----+-----+-----+-----+-----+--------+

Calibration frame (49 bytes): six comma-separated decimal divisors followed
by ``\\r\\n``.
"""

from __future__ import annotations

import logging
import math
import re
import time
from typing import Optional, Sequence, Tuple

from .errors import FailureKind, ForceSensorError, MalformedCalibrationError, MalformedFrameError
from .serial_port import SerialConfig
from .sensor import DATA_COUNT, ForceSensor, Measurement, RawFrame, SensorCommand, SensorVariant

DATA_FRAME_SIZE = 27
LSB_FRAME_SIZE = 49
FIELD_OFFSET = 1
FIELD_WIDTH = 4
TERMINATOR = b"\n"

LSB_MAX_ATTEMPTS = 5
LSB_RETRY_DELAY_S = 0.01
DEFAULT_LSB: Tuple[float, ...] = (1.0,) * DATA_COUNT

CALIBRATION_COMMAND = SensorCommand.USER_1

COMMANDS = {
    SensorCommand.REQUEST_SEND_DATA_ONCE: b"R",
    CALIBRATION_COMMAND: b"p",
}

_HEX_FIELD = re.compile(rb"[0-9A-Fa-f]{%d}" % FIELD_WIDTH)
_LSB_DELIMITERS = re.compile(rb"[,\r]")


def _check_divisors(lsb: Sequence[float]) -> None:
    if len(lsb) != DATA_COUNT:
        raise MalformedCalibrationError(f"Expected {DATA_COUNT} coefficients, got {len(lsb)}")
    for index, value in enumerate(lsb):
        if not math.isfinite(value) or value == 0:
            raise MalformedCalibrationError(f"Coefficient {index} is unusable: {value!r}")


def decode_data_frame(data: bytes, lsb: Sequence[float] = DEFAULT_LSB) -> Measurement:
    """Decode a data frame into calibrated values."""
    if len(data) != DATA_FRAME_SIZE or not data.endswith(TERMINATOR):
        raise MalformedFrameError(
            f"Expected {DATA_FRAME_SIZE}-byte frame ending in newline, got {len(data)} bytes: {data!r}"
        )
    _check_divisors(lsb)
    values = []
    for index in range(DATA_COUNT):
        start = FIELD_OFFSET + index * FIELD_WIDTH
        chunk = data[start : start + FIELD_WIDTH]
        if not _HEX_FIELD.fullmatch(chunk):
            raise MalformedFrameError(f"Axis {index} field is not hexadecimal: {chunk!r}")
        value = int(chunk, 16) / lsb[index]
        if not math.isfinite(value):
            raise MalformedCalibrationError(f"Coefficient {index} is too small: {lsb[index]!r}")
        values.append(value)
    return Measurement(*values)


def decode_lsb_frame(data: bytes) -> Tuple[float, ...]:
    """Decode a calibration frame into six divisors."""
    if len(data) != LSB_FRAME_SIZE or not data.endswith(TERMINATOR):
        raise MalformedCalibrationError(
            f"Expected {LSB_FRAME_SIZE}-byte frame ending in newline, got {len(data)} bytes: {data!r}"
        )
    parts = _LSB_DELIMITERS.split(data)
    fields, tail = parts[:-1], parts[-1]
    if len(fields) != DATA_COUNT or tail.strip():
        raise MalformedCalibrationError(f"Expected {DATA_COUNT} delimited fields in {data!r}")
    try:
        values = tuple(float(field.decode("ascii")) for field in fields)
    except ValueError as exc:
        raise MalformedCalibrationError(f"Bad coefficient in {data!r}") from exc
    _check_divisors(values)
    return values


def _is_lsb_shaped(frame: RawFrame) -> bool:
    return len(frame) == LSB_FRAME_SIZE and frame.endswith(TERMINATOR)


class DynPick(SensorVariant):
    """Command set and frame decoding for DynPick sensors.

    Coefficients start at 1.0 and are replaced, all six at once, by
    :meth:`update_lsb`. Until then readings are raw counts.
    """

    def __init__(self, lsb: Optional[Sequence[float]] = None, logger: Optional[logging.Logger] = None) -> None:
        if lsb is not None:
            _check_divisors(lsb)
        self._lsb: Tuple[float, ...] = tuple(lsb) if lsb is not None else DEFAULT_LSB
        self.logger = logger or logging.getLogger(__name__)
        self.last_error: Optional[FailureKind] = None

    @property
    def lsb(self) -> Tuple[float, ...]:
        return self._lsb

    def convert_cmd(self, command: SensorCommand) -> bytes:
        return COMMANDS.get(command, b"")

    def parse_data(self, frame: RawFrame) -> Optional[Measurement]:
        try:
            measurement = decode_data_frame(frame.data, self._lsb)
        except ForceSensorError as exc:
            self.last_error = exc.kind
            self.logger.debug("Rejected data frame: %s", exc)
            return None
        self.last_error = None
        return measurement

    def init(self, sensor: ForceSensor) -> bool:
        if not sensor.is_open():
            self.last_error = FailureKind.NOT_OPEN
            self.logger.warning("Cannot calibrate: sensor is not open")
            return False
        if self.update_lsb(sensor):
            return True
        self.logger.warning("Calibration fetch failed; readings stay in raw counts")
        return False

    def update_lsb(self, sensor: ForceSensor) -> bool:
        """Fetch and apply the per-axis coefficients."""
        frame: Optional[RawFrame] = None
        for attempt in range(1, LSB_MAX_ATTEMPTS + 1):
            candidate = sensor.read_buffer(CALIBRATION_COMMAND)
            if _is_lsb_shaped(candidate):
                frame = candidate
                break
            self.logger.debug("Calibration attempt %s/%s got %r", attempt, LSB_MAX_ATTEMPTS, candidate.data)
            if attempt < LSB_MAX_ATTEMPTS:
                time.sleep(LSB_RETRY_DELAY_S)
        if frame is None:
            self.last_error = sensor.last_error or FailureKind.MALFORMED_CALIBRATION
            return False

        try:
            lsb = decode_lsb_frame(frame.data)
        except ForceSensorError as exc:
            self.last_error = exc.kind
            self.logger.warning("Rejected calibration frame: %s", exc)
            return False
        self._lsb = lsb
        self.last_error = None
        self.logger.info("Calibration coefficients: %s", ", ".join(f"{value:g}" for value in lsb))
        return True


def dynpick_sensor(config: SerialConfig, logger: Optional[logging.Logger] = None) -> ForceSensor:
    """Build a :class:`ForceSensor` speaking the DynPick protocol on ``config``."""
    logger = logger or logging.getLogger(__name__)
    return ForceSensor(variant=DynPick(logger=logger), config=config, logger=logger)
