from __future__ import annotations

import argparse
import itertools
import logging
import time
from typing import List, Optional

from .dynpick import dynpick_sensor
from .sampling import average, collect_samples
from .sensor import DEFAULT_MAX_RETRIES, Measurement
from .serial_port import (
    DEFAULT_BAUDRATE,
    DEFAULT_DATABITS,
    DEFAULT_PARITY,
    DEFAULT_STOPBITS,
    PARITY_BY_CODE,
    STOPBITS_BY_CODE,
    SerialConfig,
)

MIN_INTERVAL_S = 0.02


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="DynPick force sensor CLI")
    parser.add_argument("--port", required=True, help="Serial port (e.g., COM5 or /dev/ttyS5)")
    parser.add_argument("--baud", type=int, default=DEFAULT_BAUDRATE, help="Serial baud rate")
    parser.add_argument("--databits", type=int, default=DEFAULT_DATABITS, choices=(5, 6, 7, 8), help="Data bits")
    parser.add_argument(
        "--stopbits",
        type=int,
        default=DEFAULT_STOPBITS,
        choices=sorted(STOPBITS_BY_CODE),
        help="Stop bits code: 0=1, 1=1.5, 2=2, 3=1 (older configs used 1 for one stop bit; use 0)",
    )
    parser.add_argument("--parity", default=DEFAULT_PARITY, choices=sorted(PARITY_BY_CODE), help="Parity")
    parser.add_argument("--interval", type=float, default=0.5, help="Seconds between readings (min 0.02)")
    parser.add_argument("--count", type=int, default=0, help="Number of readings, 0 = until interrupted")
    parser.add_argument("--retries", type=int, default=DEFAULT_MAX_RETRIES, help="Retries per reading")
    parser.add_argument("--raw", action="store_true", help="Print raw frames instead of readings")
    parser.add_argument("--average", type=int, help="Average N readings once and exit")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def _format(measurement: Measurement) -> str:
    return " ".join(f"{name}={value:.4f}" for name, value in zip(Measurement._fields, measurement))


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    logger = logging.getLogger("force_sensor.cli")

    try:
        config = SerialConfig(
            port=args.port,
            baudrate=args.baud,
            databits=args.databits,
            stopbits=args.stopbits,
            parity=args.parity,
        )
    except ValueError as exc:
        logger.error("Error: %s", exc)
        return 1
    interval = max(args.interval, MIN_INTERVAL_S)

    with dynpick_sensor(config, logger=logger) as sensor:
        if not sensor.is_open():
            logger.error("Open failed: %s", args.port)
            return 1
        logger.info("Connected to %s", args.port)
        if not sensor.init():
            logger.error("Init failed: %s", sensor.variant.last_error)
            return 2

        if args.average:
            samples = collect_samples(sensor, args.average, interval_s=interval, max_count=args.retries)
            if len(samples) == 0:
                logger.error("No valid readings collected")
                return 1
            print(f"Average of {len(samples)}: {_format(average(samples))}")
            return 0

        counter = itertools.count() if args.count <= 0 else range(args.count)
        try:
            for idx in counter:
                if idx:
                    time.sleep(interval)
                if args.raw:
                    frame = sensor.read_buffer()
                    if len(frame):
                        print(f"Read: {frame.text()!r}")
                    else:
                        logger.warning("No reply: %s", sensor.last_error)
                else:
                    print(f"Data: {_format(sensor.read_data(args.retries))}")
        except KeyboardInterrupt:
            logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
