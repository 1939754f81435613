"""Byte-level serial transport for poll-driven sensors.

Reads only drain what the driver has already queued and writes are rejected
(not queued) while a previous write is still draining. Callers pace the
request/response cycle themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import serial

DEFAULT_BAUDRATE = 921600
DEFAULT_DATABITS = 8
DEFAULT_STOPBITS = 0
DEFAULT_PARITY = "N"

READ_FAILED = -1
WRITE_FAILED = -1

BYTESIZE_BY_DATABITS = {
    5: serial.FIVEBITS,
    6: serial.SIXBITS,
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

# Code 3 duplicates code 0; kept so existing device configurations still load.
STOPBITS_BY_CODE = {
    0: serial.STOPBITS_ONE,
    1: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
    3: serial.STOPBITS_ONE,
}

PARITY_BY_CODE = {
    "N": serial.PARITY_NONE,
    "O": serial.PARITY_ODD,
    "E": serial.PARITY_EVEN,
}


class PortState(Enum):
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SerialConfig:
    """Line settings applied every time the port is opened."""

    port: str
    baudrate: int = DEFAULT_BAUDRATE
    databits: int = DEFAULT_DATABITS
    stopbits: int = DEFAULT_STOPBITS
    parity: str = DEFAULT_PARITY

    def __post_init__(self) -> None:
        if not self.port:
            raise ValueError("Serial port is not configured.")
        if self.baudrate <= 0:
            raise ValueError(f"Baud rate must be positive, got {self.baudrate}")
        if self.databits not in BYTESIZE_BY_DATABITS:
            raise ValueError(f"Data bits must be 5..8, got {self.databits}")
        if self.stopbits not in STOPBITS_BY_CODE:
            raise ValueError(f"Stop bits code must be 0..3, got {self.stopbits}")
        if self.parity not in PARITY_BY_CODE:
            raise ValueError(f"Parity must be one of N, O, E, got {self.parity!r}")

    @property
    def bytesize(self) -> int:
        return BYTESIZE_BY_DATABITS[self.databits]

    @property
    def serial_stopbits(self) -> float:
        return STOPBITS_BY_CODE[self.stopbits]

    @property
    def serial_parity(self) -> str:
        return PARITY_BY_CODE[self.parity]


@dataclass
class SerialPort:
    """Owns one serial device handle.

    None of the operations raise: failures come back as ``False`` or a
    negative count, and the reason is logged.
    """

    config: SerialConfig
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _serial: Optional[serial.Serial] = field(default=None, init=False, repr=False)
    _state: PortState = field(default=PortState.CLOSED, init=False, repr=False)

    @property
    def state(self) -> PortState:
        return self._state

    def open(self) -> bool:
        """Open and configure the port. Returns ``True`` if already open."""
        if self._state is PortState.OPEN:
            return True
        cfg = self.config
        self.logger.info(
            "Connecting to %s at %s baud (%s%s, stop code %s)",
            cfg.port,
            cfg.baudrate,
            cfg.databits,
            cfg.parity,
            cfg.stopbits,
        )
        try:
            self._serial = serial.Serial(
                port=cfg.port,
                baudrate=cfg.baudrate,
                bytesize=cfg.bytesize,
                parity=cfg.serial_parity,
                stopbits=cfg.serial_stopbits,
                timeout=0,
                write_timeout=0,
            )
            self._serial.reset_input_buffer()
        except (serial.SerialException, OSError, ValueError) as exc:
            self.logger.warning("Could not open %s: %s", cfg.port, exc)
            self._release()
            self._state = PortState.ERROR
            return False
        self._state = PortState.OPEN
        return True

    def close(self) -> None:
        """Release the handle. Safe to call in any state."""
        if self._serial is not None:
            self._release()
            self.logger.info("Disconnected from %s", self.config.port)
        self._state = PortState.CLOSED

    def is_open(self) -> bool:
        return self._state is PortState.OPEN

    def read(self, buffer: bytearray, max_count: int) -> int:
        """Copy up to ``max_count`` already-queued bytes into ``buffer``.

        Returns the number of bytes copied, 0 if nothing is queued, or
        ``READ_FAILED`` if the port is not open or the driver reports an error.
        """
        if not self.is_open() or self._serial is None:
            return READ_FAILED
        try:
            count = min(self._serial.in_waiting, max_count, len(buffer))
            if count <= 0:
                return 0
            data = self._serial.read(count)
        except (serial.SerialException, OSError) as exc:
            self.logger.warning("Read from %s failed: %s", self.config.port, exc)
            return READ_FAILED
        buffer[: len(data)] = data
        self.logger.debug("Received: %r", bytes(data))
        return len(data)

    def write(self, data: bytes) -> int:
        """Write ``data`` if the output queue is empty.

        Returns bytes written, 0 when a previous write is still draining, or
        ``WRITE_FAILED``.
        """
        if not self.is_open() or self._serial is None:
            return WRITE_FAILED
        try:
            if self._serial.out_waiting > 0:
                self.logger.debug("Output queue busy, dropping %r", data)
                return 0
            written = self._serial.write(data)
        except (serial.SerialException, OSError) as exc:
            self.logger.warning("Write to %s failed: %s", self.config.port, exc)
            return WRITE_FAILED
        self.logger.debug("Sending: %r", data)
        return written or 0

    def flush(self) -> bool:
        """Discard unread input and pending output."""
        if not self.is_open() or self._serial is None:
            return False
        try:
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()
        except (serial.SerialException, OSError) as exc:
            self.logger.warning("Flush of %s failed: %s", self.config.port, exc)
            return False
        return True

    def _release(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (serial.SerialException, OSError) as exc:
            self.logger.warning("Error closing %s: %s", self.config.port, exc)
        finally:
            self._serial = None

    def __enter__(self) -> "SerialPort":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False
