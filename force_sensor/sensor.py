"""Command/response cycle and bounded-retry acquisition for serial F/T sensors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import NamedTuple, Optional, Union

from .errors import FailureKind
from .serial_port import SerialConfig, SerialPort

DATA_COUNT = 6
BUFFER_MAX_SIZE = 60
DEFAULT_MAX_RETRIES = 10


class SensorCommand(IntEnum):
    REQUEST_SEND_DATA_ONCE = 0
    USER_1 = 1
    USER_2 = 2
    USER_3 = 3


class SensorState(Enum):
    CLOSED = "closed"
    UNCALIBRATED = "uncalibrated"
    READY = "ready"


@dataclass(frozen=True)
class RawFrame:
    """One device response, stored with its explicit length."""

    data: bytes = b""
    capacity: int = BUFFER_MAX_SIZE

    def __post_init__(self) -> None:
        # The last slot is reserved, so a full frame holds capacity - 1 bytes.
        if len(self.data) >= self.capacity:
            raise ValueError(f"Frame of {len(self.data)} bytes exceeds capacity {self.capacity}")

    def __len__(self) -> int:
        return len(self.data)

    def __bytes__(self) -> bytes:
        return self.data

    def endswith(self, suffix: bytes) -> bool:
        return self.data.endswith(suffix)

    def text(self) -> str:
        return self.data.decode("ascii", errors="replace")


class Measurement(NamedTuple):
    fx: float = 0.0
    fy: float = 0.0
    fz: float = 0.0
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.0

    @classmethod
    def zero(cls) -> "Measurement":
        return cls()


class SensorVariant(ABC):
    """Command encoding and response parsing for one sensor family."""

    last_error: Optional[FailureKind] = None

    @abstractmethod
    def convert_cmd(self, command: SensorCommand) -> bytes:
        """Return the wire bytes for ``command``, or ``b""`` if unsupported."""

    @abstractmethod
    def parse_data(self, frame: RawFrame) -> Optional[Measurement]:
        """Return a measurement, or ``None`` if the frame is malformed."""

    def init(self, sensor: "ForceSensor") -> bool:
        return True


@dataclass(eq=False)
class ForceSensor:
    """A force/torque sensor behind a :class:`SerialPort`.

    The sensor owns its transport exclusively and cannot be copied. Public
    operations report failure through their return value; the reason is kept
    in :attr:`last_error`.
    """

    variant: SensorVariant
    config: Optional[SerialConfig] = None
    transport: Optional[SerialPort] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _buffer: RawFrame = field(default_factory=RawFrame, init=False, repr=False)
    _data: Measurement = field(default_factory=Measurement.zero, init=False, repr=False)
    _scratch: bytearray = field(default_factory=lambda: bytearray(BUFFER_MAX_SIZE), init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)
    _last_error: Optional[FailureKind] = field(default=None, init=False, repr=False)
    _last_cause: Optional[FailureKind] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.transport is None:
            if self.config is None:
                raise ValueError("Either a serial config or a transport is required.")
            self.transport = SerialPort(self.config, logger=self.logger)
        elif self.config is None:
            self.config = self.transport.config
        elif self.config != self.transport.config:
            raise ValueError("Serial config does not match the transport's config.")

    def __copy__(self):
        raise TypeError("ForceSensor owns a live device handle and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("ForceSensor owns a live device handle and cannot be copied")

    def __reduce_ex__(self, protocol):
        raise TypeError("ForceSensor owns a live device handle and cannot be pickled")

    def __enter__(self) -> "ForceSensor":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def state(self) -> SensorState:
        if not self.is_open():
            return SensorState.CLOSED
        return SensorState.READY if self._initialized else SensorState.UNCALIBRATED

    @property
    def last_error(self) -> Optional[FailureKind]:
        return self._last_error

    @property
    def last_cause(self) -> Optional[FailureKind]:
        """Underlying failure behind ``RETRIES_EXHAUSTED``."""
        return self._last_cause

    def open(self) -> bool:
        if self.transport.open():
            return True
        return self._fail(FailureKind.DEVICE_UNAVAILABLE)

    def close(self) -> None:
        self.transport.close()
        self._initialized = False

    def is_open(self) -> bool:
        return self.transport.is_open()

    def init(self) -> bool:
        """Run the variant's one-time setup; success makes the sensor READY.

        A failed repeat keeps an earlier READY state, since the variant keeps
        its previous calibration.
        """
        ok = self.variant.init(self)
        self._initialized = ok or self._initialized
        return ok

    def send_cmd(self, command: Union[SensorCommand, int]) -> bool:
        try:
            command = SensorCommand(command)
        except ValueError:
            return self._fail(FailureKind.UNKNOWN_COMMAND, command)
        if not self.transport.is_open():
            return self._fail(FailureKind.NOT_OPEN, command)
        payload = self.variant.convert_cmd(command)
        if not payload:
            return self._fail(FailureKind.UNKNOWN_COMMAND, command)
        if self.transport.write(payload) <= 0:
            return self._fail(FailureKind.WRITE_REJECTED, command)
        return True

    def update_buffer(self, command: Union[SensorCommand, int] = SensorCommand.REQUEST_SEND_DATA_ONCE) -> bool:
        """Send ``command`` and take whatever the device has queued as the new frame."""
        if not self.send_cmd(command):
            return False
        count = self.transport.read(self._scratch, BUFFER_MAX_SIZE - 1)
        if count <= 0:
            return self._fail(FailureKind.SHORT_OR_FAILED_READ, command)
        self._buffer = RawFrame(bytes(self._scratch[:count]))
        # Drop trailing bytes of a late or partial response.
        self.transport.flush()
        self._last_error = None
        return True

    def update_buffer_until_correct(
        self, command: Union[SensorCommand, int] = SensorCommand.REQUEST_SEND_DATA_ONCE
    ) -> bool:
        """Single raw acquisition; frame validation is left to the caller."""
        return self.update_buffer(command)

    def update_data_until_correct(self, max_count: int = DEFAULT_MAX_RETRIES) -> bool:
        """Acquire and parse, retrying up to ``max_count`` times after the first attempt."""
        attempts = max(0, max_count) + 1
        for attempt in range(1, attempts + 1):
            if self._update_data():
                self._last_cause = None
                return True
            self.logger.debug("Attempt %s/%s failed: %s", attempt, attempts, self._last_error)
        self._last_cause = self._last_error
        self._last_error = FailureKind.RETRIES_EXHAUSTED
        self.logger.warning(
            "No valid frame after %s attempts (last failure: %s)",
            attempts,
            self._last_cause.value if self._last_cause else "unknown",
        )
        return False

    def read_buffer(self, command: Union[SensorCommand, int] = SensorCommand.REQUEST_SEND_DATA_ONCE) -> RawFrame:
        if self.update_buffer_until_correct(command):
            return self._buffer
        return RawFrame()

    def read_data(self, max_count: int = DEFAULT_MAX_RETRIES) -> Measurement:
        if self.update_data_until_correct(max_count):
            return self._data
        return Measurement.zero()

    def get_buffer(self) -> RawFrame:
        return self._buffer

    def get_data(self) -> Measurement:
        return self._data

    def _update_data(self) -> bool:
        if not self.update_buffer(SensorCommand.REQUEST_SEND_DATA_ONCE):
            return False
        measurement = self.variant.parse_data(self._buffer)
        if measurement is None:
            return self._fail(self.variant.last_error or FailureKind.MALFORMED_FRAME, self._buffer.data)
        self._data = measurement
        self._last_error = None
        return True

    def _fail(self, kind: FailureKind, detail: object = None) -> bool:
        self._last_error = kind
        self.logger.debug("%s: %r", kind.value, detail)
        return False
