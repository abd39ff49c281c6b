"""
Signal preprocessing for raw IMU sequences.
Moving-average smoothing applied before feature extraction
and before a sequence is stored as a DTW exemplar.
"""

import logging
from typing import List, Sequence

import numpy as np

from core.types import SensorSample, samples_to_array

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 3


def moving_average(samples: Sequence[SensorSample], window: int = DEFAULT_WINDOW) -> List[SensorSample]:
    """Smooth every axis with a moving average around each sample.

    For index ``i`` the inclusive span
    ``[max(0, i - (window - 1) // 2), min(n - 1, i + window // 2)]`` is
    averaged, so edges use a truncated window. An odd window is centered;
    an even one reaches one sample further forward than back (window 4
    covers ``i - 1 .. i + 2``). Timestamps are copied, not averaged.

    Args:
        samples: Time-ordered sensor samples.
        window: Window width in samples. ``<= 1`` disables smoothing.

    Returns:
        A new list of the same length, or ``samples`` itself when the
        window is trivial or there are at most two samples.
    """
    n = len(samples)
    if window <= 1 or n <= 2:
        return samples

    back = (window - 1) // 2
    forward = window // 2
    data = samples_to_array(samples)

    smoothed = []
    for i in range(n):
        start = max(0, i - back)
        end = min(n - 1, i + forward)
        averaged = np.sum(data[start:end + 1], axis=0) / (end - start + 1)
        smoothed.append(SensorSample(samples[i].t, *(float(v) for v in averaged)))
    return smoothed
