"""
DTW template matching over raw IMU sequences.

Each label owns a list of exemplar sequences. A query is compared against
every exemplar with Dynamic Time Warping; the label with the lowest mean
distance wins, and the match is accepted only when the closest exemplar
of that label is inside an adaptive threshold derived from the label's
own intra-class spread.

Distances are length-normalized by ``n + m`` (combined sequence length),
not by the optimal warping path length. Acceptance thresholds are tuned
against this exact denominator.
"""

import json
import logging
import math
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from core.types import (
    PredictionResult,
    SensorSample,
    SequenceValidationError,
    TrainingCancelledError,
    ValidationError,
    ensure_time_ordered,
    samples_to_array,
    sequence_from_json,
)
from modules.utils.logger import log_timing

logger = logging.getLogger(__name__)

INF = float("inf")


# =============================================================================
# Distance
# =============================================================================

def normalize_sequence(data: np.ndarray) -> np.ndarray:
    """Z-score each axis using statistics of this sequence alone."""
    if data.shape[0] == 0:
        return data
    mean = data.mean(axis=0)
    std = np.sqrt(np.mean((data - mean) ** 2, axis=0))
    std[std == 0] = 1.0
    return (data - mean) / std


def dtw_distance(seq_a, seq_b) -> float:
    """Length-normalized DTW distance between two sample sequences.

    Accepts lists of SensorSample or ``(n, 6)`` arrays. Comparing against
    an empty sequence returns ``inf``.
    """
    a = seq_a if isinstance(seq_a, np.ndarray) else samples_to_array(seq_a)
    b = seq_b if isinstance(seq_b, np.ndarray) else samples_to_array(seq_b)
    n, m = a.shape[0], b.shape[0]
    if n == 0 or m == 0:
        return INF

    a = normalize_sequence(a)
    b = normalize_sequence(b)
    cost = np.sqrt(np.sum((a[:, None, :] - b[None, :, :]) ** 2, axis=2)).tolist()

    prev = [0.0] + [INF] * m
    for i in range(1, n + 1):
        row = [INF] * (m + 1)
        cost_row = cost[i - 1]
        for j in range(1, m + 1):
            best = prev[j]
            if row[j - 1] < best:
                best = row[j - 1]
            if prev[j - 1] < best:
                best = prev[j - 1]
            row[j] = cost_row[j - 1] + best
        prev = row

    return prev[m] / (n + m)


# =============================================================================
# Template Store
# =============================================================================

@dataclass(frozen=True)
class LabelStats:
    """Intra-label DTW spread across a label's own exemplars."""
    mean_intra: float
    max_intra: float
    exemplar_count: int


def compute_label_stats(exemplars: Sequence[Sequence[SensorSample]]) -> LabelStats:
    n = len(exemplars)
    if n <= 1:
        return LabelStats(0.0, 0.0, n)
    arrays = [samples_to_array(ex) for ex in exemplars]
    pairs = [
        dtw_distance(arrays[i], arrays[j])
        for i in range(n)
        for j in range(i + 1, n)
    ]
    return LabelStats(sum(pairs) / len(pairs), max(pairs), n)


class TemplateStore:
    """Immutable snapshot of per-label exemplar sequences.

    ``add`` and ``clear`` return new stores; an existing snapshot never
    changes, so readers holding one never observe a partial update.
    Label statistics are recomputed for the touched label on every add.
    """

    def __init__(self, templates: Optional[Mapping[str, Sequence[Sequence[SensorSample]]]] = None,
                 _stats: Optional[Mapping[str, LabelStats]] = None):
        frozen = {}
        for label, exemplars in (templates or {}).items():
            frozen[label] = tuple(tuple(ex) for ex in exemplars)
        self._templates = MappingProxyType(frozen)

        if _stats is None:
            _stats = {label: compute_label_stats(exs) for label, exs in frozen.items()}
        self._stats = MappingProxyType(dict(_stats))

    # ------------------------------------------------------------------
    # Snapshot operations
    # ------------------------------------------------------------------

    def add(self, label: str, samples: Sequence[SensorSample]) -> "TemplateStore":
        """Return a new store with ``samples`` appended to ``label``."""
        label = (label or "").strip()
        if not label:
            raise ValidationError("Template label must be a non-empty string")
        if not samples:
            raise SequenceValidationError("Cannot store an empty sequence as an exemplar")
        ensure_time_ordered(samples)

        templates = dict(self._templates)
        templates[label] = templates.get(label, ()) + (tuple(samples),)
        stats = dict(self._stats)
        stats[label] = compute_label_stats(templates[label])
        logger.debug("Template '%s' now has %d exemplars", label, len(templates[label]))
        return TemplateStore(templates, _stats=stats)

    @staticmethod
    def clear() -> "TemplateStore":
        return TemplateStore()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def labels(self) -> List[str]:
        return list(self._templates.keys())

    def exemplars(self, label: str) -> Tuple[Tuple[SensorSample, ...], ...]:
        return self._templates.get(label, ())

    def stats(self, label: str) -> Optional[LabelStats]:
        return self._stats.get(label)

    @property
    def all_stats(self) -> Mapping[str, LabelStats]:
        return self._stats

    def __len__(self):
        return len(self._templates)

    def __contains__(self, label):
        return label in self._templates

    def __eq__(self, other):
        if not isinstance(other, TemplateStore):
            return NotImplemented
        return dict(self._templates) == dict(other._templates)

    def __repr__(self):
        counts = ", ".join("%s=%d" % (k, len(v)) for k, v in self._templates.items())
        return "TemplateStore(%s)" % counts

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            label: [[s.to_dict() for s in ex] for ex in exemplars]
            for label, exemplars in self._templates.items()
        }

    @classmethod
    def from_dict(cls, payload) -> "TemplateStore":
        """Strictly parse ``{label: [[sample, ...], ...]}``."""
        if not isinstance(payload, dict):
            raise ValidationError("Template JSON must be an object of label → exemplars")
        store = cls()
        for label, exemplars in payload.items():
            if not isinstance(exemplars, list) or not exemplars:
                raise ValidationError(
                    f"Templates for '{label}' must be a non-empty list of sequences"
                )
            for exemplar in exemplars:
                store = store.add(label, sequence_from_json(exemplar))
        return store

    def save(self, path: str):
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Saved %d template labels to %s", len(self), path)

    @classmethod
    def load(cls, path: str) -> "TemplateStore":
        with open(path, "r") as f:
            payload = json.load(f)
        store = cls.from_dict(payload)
        logger.info("Loaded templates from %s: %s", path, ", ".join(store.labels))
        return store


# =============================================================================
# Matcher
# =============================================================================

@dataclass(frozen=True)
class LabelDistances:
    distances: Tuple[float, ...]
    mean: float
    min: float


@dataclass(frozen=True)
class DTWMatch:
    """Outcome of matching one query against a template store.

    ``label`` is None when there was nothing to match against (no
    templates, or every distance was infinite). A non-accepted match is a
    low-confidence result, not an error.
    """
    label: Optional[str]
    mean_distance: float
    min_distance: float
    threshold: float
    accepted: bool
    details: Mapping[str, LabelDistances] = field(default_factory=dict)
    stats: Optional[LabelStats] = None

    @property
    def prediction(self) -> Optional[PredictionResult]:
        """Pseudo-probability distribution from ``exp(-mean distance)``."""
        if self.label is None:
            return None
        weights = [(label, math.exp(-d.mean)) for label, d in self.details.items()]
        total = sum(w for _, w in weights) or 1.0
        return PredictionResult.from_scores(
            [(label, w / total) for label, w in weights],
            best_label=self.label,
        )

    @property
    def confidence(self) -> float:
        prediction = self.prediction
        return prediction.confidence if prediction else 0.0

    def summary_lines(self) -> List[str]:
        if self.label is None:
            return ["No templates to compare with."]
        detail = self.details[self.label]
        lines = [
            "Label: %s" % self.label,
            "minDist: %.3f" % self.min_distance,
            "avgDist: %.3f" % self.mean_distance,
            "adaptiveTh: %.3f" % self.threshold,
            "meanIntra: %s" % ("%.3f" % self.stats.mean_intra if self.stats else "N/A"),
            "maxIntra: %s" % ("%.3f" % self.stats.max_intra if self.stats else "N/A"),
            "exemplars: %d" % len(detail.distances),
        ]
        lines.extend("#%d: %.3f" % (i + 1, d) for i, d in enumerate(detail.distances))
        return lines


class DTWMatcher:
    """Nearest-exemplar classifier with an adaptive acceptance threshold."""

    def __init__(self, config: Optional[dict] = None):
        config = config or {}
        self._min_threshold = config.get("min_threshold", 0.3)
        self._threshold_scale = config.get("threshold_scale", 1.5)
        self._fallback_threshold = config.get("fallback_threshold", 0.6)
        self._min_exemplars = config.get("min_exemplars_for_adaptive", 2)

    def adaptive_threshold(self, stats: Optional[LabelStats]) -> float:
        if stats is not None and stats.exemplar_count >= self._min_exemplars:
            return max(self._min_threshold, stats.mean_intra * self._threshold_scale)
        return self._fallback_threshold

    @log_timing(slow_ms=250)
    def classify(self, store: TemplateStore, samples: Sequence[SensorSample],
                 cancel_event: Optional[threading.Event] = None) -> DTWMatch:
        """Match ``samples`` against every exemplar in ``store``.

        Args:
            store: Template snapshot to compare against.
            samples: Query sequence (already smoothed by the caller).
            cancel_event: Checked between exemplar comparisons; when set,
                ``TrainingCancelledError`` is raised.
        """
        query = samples_to_array(samples)
        details: Dict[str, LabelDistances] = {}
        best_label = None
        best_score = INF

        for label in store.labels:
            distances = []
            for exemplar in store.exemplars(label):
                if cancel_event is not None and cancel_event.is_set():
                    raise TrainingCancelledError("DTW matching cancelled")
                distances.append(dtw_distance(query, samples_to_array(exemplar)))
            mean = sum(distances) / len(distances)
            details[label] = LabelDistances(tuple(distances), mean, min(distances))
            if mean < best_score:
                best_score = mean
                best_label = label

        if best_label is None:
            return DTWMatch(None, INF, INF, self._fallback_threshold, False, details)

        stats = store.stats(best_label)
        threshold = self.adaptive_threshold(stats)
        best = details[best_label]
        accepted = best.min < threshold

        logger.debug("DTW best=%s min=%.3f avg=%.3f threshold=%.3f accepted=%s",
                     best_label, best.min, best.mean, threshold, accepted)

        return DTWMatch(
            label=best_label,
            mean_distance=best.mean,
            min_distance=best.min,
            threshold=threshold,
            accepted=accepted,
            details=details,
            stats=stats,
        )
