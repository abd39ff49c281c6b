"""
Shared domain types for the motion gesture system.

Centralizes sensor samples, feature vectors, prediction results and the
error hierarchy used across modules, so the recognition, training and
session layers agree on a single vocabulary.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np


# =============================================================================
# Errors
# =============================================================================

class GestureMLError(Exception):
    """Base class for all gesture pipeline errors."""


class ValidationError(GestureMLError, ValueError):
    """A precondition or schema check failed; the operation is aborted."""


class SequenceValidationError(ValidationError):
    """Sensor sequence is empty or not ordered by timestamp."""


class DatasetValidationError(ValidationError):
    """Dataset payload or dataset precondition is invalid."""


class FeatureLayoutError(DatasetValidationError):
    """Feature schema of an entry differs from the dataset schema."""


class ModelValidationError(ValidationError):
    """Model payload is missing fields or has inconsistent shapes."""


class TrainingCancelledError(GestureMLError):
    """Training or matching was cancelled between checkpoints."""


# =============================================================================
# Sensor Axes
# =============================================================================

# (sample attribute, feature label) in canonical order
SENSOR_AXES: Tuple[Tuple[str, str], ...] = (
    ("ax", "accel_x"),
    ("ay", "accel_y"),
    ("az", "accel_z"),
    ("gx", "gyro_x"),
    ("gy", "gyro_y"),
    ("gz", "gyro_z"),
)

AXIS_KEYS: Tuple[str, ...] = tuple(key for key, _ in SENSOR_AXES)


# =============================================================================
# Data Containers
# =============================================================================

@dataclass(frozen=True)
class SensorSample:
    """One accelerometer + gyroscope reading, timestamped in milliseconds."""

    t: float
    ax: float = 0.0
    ay: float = 0.0
    az: float = 0.0
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0

    @property
    def axes(self) -> Tuple[float, ...]:
        return (self.ax, self.ay, self.az, self.gx, self.gy, self.gz)

    def to_dict(self) -> dict:
        return {
            "t": self.t,
            "ax": self.ax, "ay": self.ay, "az": self.az,
            "gx": self.gx, "gy": self.gy, "gz": self.gz,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SensorSample":
        if not isinstance(data, dict):
            raise SequenceValidationError(
                f"Sensor sample must be an object, got {type(data).__name__}"
            )
        missing = [key for key in ("t",) + AXIS_KEYS if key not in data]
        if missing:
            raise SequenceValidationError(
                f"Sensor sample missing field(s): {', '.join(missing)}"
            )
        values = {}
        for key in ("t",) + AXIS_KEYS:
            value = data[key]
            if not is_finite_number(value):
                raise SequenceValidationError(
                    f"Sensor sample field '{key}' must be a finite number, got {value!r}"
                )
            values[key] = float(value)
        return cls(**values)


def samples_to_array(samples: Sequence[SensorSample]) -> np.ndarray:
    """Stack the six axes of a sequence into an ``(n, 6)`` float array."""
    if not samples:
        return np.zeros((0, len(AXIS_KEYS)), dtype=np.float64)
    return np.array([s.axes for s in samples], dtype=np.float64)


def ensure_time_ordered(samples: Sequence[SensorSample]) -> None:
    """Raise if timestamps decrease anywhere in the sequence."""
    for i in range(1, len(samples)):
        if samples[i].t < samples[i - 1].t:
            raise SequenceValidationError(
                f"Samples must be ordered by timestamp (index {i}: "
                f"{samples[i].t} < {samples[i - 1].t})"
            )


def sequence_from_json(payload) -> List[SensorSample]:
    """Parse a JSON list of sample objects into a time-ordered sequence."""
    if not isinstance(payload, list):
        raise SequenceValidationError("Sequence JSON must be a list of samples")
    samples = [SensorSample.from_dict(item) for item in payload]
    ensure_time_ordered(samples)
    return samples


@dataclass(frozen=True)
class FeatureVector:
    """Fixed-order feature values with their authoritative name schema."""

    names: Tuple[str, ...]
    values: Tuple[float, ...]
    sample_count: int = 0
    duration_ms: float = 0.0

    def __post_init__(self):
        if len(self.names) != len(self.values):
            raise FeatureLayoutError(
                f"Feature vector has {len(self.values)} values for "
                f"{len(self.names)} names"
            )

    def is_comparable(self, other: "FeatureVector") -> bool:
        return self.names == other.names

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def __len__(self):
        return len(self.values)


@dataclass(frozen=True)
class LabelConfidence:
    label: str
    confidence: float


@dataclass(frozen=True)
class PredictionResult:
    """Top label plus the full distribution, sorted by descending confidence."""

    label: str
    confidence: float
    distribution: Tuple[LabelConfidence, ...] = field(default_factory=tuple)

    @classmethod
    def from_scores(cls, scores: Iterable[Tuple[str, float]],
                    best_label: Optional[str] = None) -> "PredictionResult":
        """Build a result from (label, confidence) pairs.

        The top label defaults to the head of the sorted distribution;
        ``best_label`` overrides it when the caller already picked one.
        """
        distribution = tuple(sorted(
            (LabelConfidence(label, float(conf)) for label, conf in scores),
            key=lambda lc: -lc.confidence,
        ))
        if not distribution:
            raise ValidationError("Cannot build a prediction without labels")
        if best_label is None:
            top = distribution[0]
        else:
            top = next(lc for lc in distribution if lc.label == best_label)
        return cls(top.label, top.confidence, distribution)

    @property
    def runner_up(self) -> Optional[LabelConfidence]:
        return self.distribution[1] if len(self.distribution) > 1 else None

    def as_dict(self) -> Dict[str, float]:
        return {lc.label: lc.confidence for lc in self.distribution}

    def __repr__(self):
        return f"PredictionResult({self.label}, conf={self.confidence:.2f})"


def is_finite_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )
