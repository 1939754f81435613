from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np

from .sensor import DATA_COUNT, DEFAULT_MAX_RETRIES, ForceSensor, Measurement


def collect_samples(
    sensor: ForceSensor,
    count: int,
    interval_s: float = 0.0,
    max_count: int = DEFAULT_MAX_RETRIES,
    logger: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Request ``count`` readings and stack the successful ones into an (n, 6) array."""
    logger = logger or logging.getLogger(__name__)
    rows = []
    for idx in range(count):
        if idx and interval_s > 0:
            time.sleep(interval_s)
        if sensor.update_data_until_correct(max_count):
            rows.append(sensor.get_data())
        else:
            logger.warning("Sample %d skipped: %s", idx, sensor.last_cause or sensor.last_error)
    if not rows:
        return np.empty((0, DATA_COUNT), dtype=float)
    return np.asarray(rows, dtype=float)


def average(samples: np.ndarray) -> Measurement:
    samples = np.asarray(samples, dtype=float)
    if samples.ndim != 2 or samples.shape[1] != DATA_COUNT:
        raise ValueError(f"Samples must have shape (n, {DATA_COUNT}), got {samples.shape}")
    if samples.shape[0] == 0:
        raise ValueError("Cannot average an empty sample set.")
    return Measurement(*(float(value) for value in samples.mean(axis=0)))
