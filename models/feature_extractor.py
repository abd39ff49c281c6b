"""
Feature extraction pipeline: IMU sample sequence → statistical feature vector.

Converts a variable-length accelerometer + gyroscope recording into a
fixed-order vector suitable for the softmax classifier and the
nearest-neighbour baseline.

Feature layout (51 dimensions):
    [0:42]   Per-axis stats for accel_x..gyro_z (6 × 7):
             mean, std, min, max, range, energy, avgAbsDiff
    [42:45]  Accel magnitude mean, std, energy
    [45:48]  Gyro magnitude mean, std, energy
    [48:51]  duration_ms, sample_count, sample_rate_hz

Consumers match features by position, so this order must never change.
"""

import logging
from typing import List, Sequence

import numpy as np

from core.types import SENSOR_AXES, FeatureVector, SensorSample, samples_to_array

logger = logging.getLogger(__name__)

AXIS_STATS = ("mean", "std", "min", "max", "range", "energy", "avgAbsDiff")
MAGNITUDE_STATS = ("mean", "std", "energy")


def _build_feature_names() -> List[str]:
    names = []
    for _, axis_label in SENSOR_AXES:
        for stat in AXIS_STATS:
            names.append("%s_%s" % (axis_label, stat))
    for series in ("accel_magnitude", "gyro_magnitude"):
        for stat in MAGNITUDE_STATS:
            names.append("%s_%s" % (series, stat))
    names.extend(["duration_ms", "sample_count", "sample_rate_hz"])
    return names


FEATURE_NAMES = tuple(_build_feature_names())
FEATURE_DIM = len(FEATURE_NAMES)


class SensorFeatureExtractor:
    """Converts a sensor sample sequence to a fixed-size feature vector.

    Empty sequences yield all-zero statistics rather than failing, so the
    extractor never produces NaN on legitimate edge-case data.
    """

    def __init__(self):
        self._feature_dim = FEATURE_DIM

    @property
    def feature_dim(self):
        return self._feature_dim

    @property
    def feature_names(self):
        return FEATURE_NAMES

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, samples: Sequence[SensorSample]) -> FeatureVector:
        """Convert a time-ordered sequence → 51-feature vector.

        Args:
            samples: list of SensorSample (may be empty)

        Returns:
            FeatureVector with ``FEATURE_NAMES`` as its schema
        """
        sample_count = len(samples)
        duration_ms = float(samples[-1].t - samples[0].t) if sample_count else 0.0
        data = samples_to_array(samples)

        values = []

        # --- Per-axis statistics (42 dims) ----------------------------
        for axis_idx in range(len(SENSOR_AXES)):
            values.extend(self._axis_stats(data[:, axis_idx]))

        # --- Magnitude statistics (6 dims) ----------------------------
        accel_mag = np.sqrt(np.sum(data[:, 0:3] ** 2, axis=1))
        gyro_mag = np.sqrt(np.sum(data[:, 3:6] ** 2, axis=1))
        values.extend(self._magnitude_stats(accel_mag))
        values.extend(self._magnitude_stats(gyro_mag))

        # --- Timing (3 dims) ------------------------------------------
        if duration_ms > 0:
            sample_rate = sample_count / duration_ms * 1000.0
        else:
            sample_rate = float(sample_count)
        values.extend([duration_ms, float(sample_count), sample_rate])

        return FeatureVector(
            names=FEATURE_NAMES,
            values=tuple(float(v) for v in values),
            sample_count=sample_count,
            duration_ms=duration_ms,
        )

    def extract_batch(self, sequences):
        """Extract features for many sequences.

        Returns:
            np.ndarray of shape (N, 51)
        """
        out = np.zeros((len(sequences), self._feature_dim), dtype=np.float64)
        for i, samples in enumerate(sequences):
            out[i] = self.extract(samples).values
        return out

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _axis_stats(values):
        n = values.shape[0]
        if n == 0:
            return [0.0] * len(AXIS_STATS)
        mean = float(np.mean(values))
        std = float(np.sqrt(np.mean((values - mean) ** 2)))
        v_min = float(np.min(values))
        v_max = float(np.max(values))
        energy = float(np.mean(values * values))
        avg_abs_diff = float(np.sum(np.abs(np.diff(values)))) / max(1, n - 1)
        return [mean, std, v_min, v_max, v_max - v_min, energy, avg_abs_diff]

    @staticmethod
    def _magnitude_stats(values):
        if values.shape[0] == 0:
            return [0.0] * len(MAGNITUDE_STATS)
        mean = float(np.mean(values))
        std = float(np.sqrt(np.mean((values - mean) ** 2)))
        energy = float(np.mean(values * values))
        return [mean, std, energy]


_default_extractor = SensorFeatureExtractor()


def extract_features(samples: Sequence[SensorSample]) -> FeatureVector:
    """Module-level shortcut for ``SensorFeatureExtractor().extract``."""
    return _default_extractor.extract(samples)
