"""
Gesture dataset of extracted feature vectors.

A dataset is an immutable snapshot: one shared feature-name schema plus an
insertion-ordered tuple of entries. Appending returns a new dataset, so a
reader holding a snapshot (e.g. a per-label stats view) never observes a
half-updated collection.

JSON layout (file export and in-memory exchange)::

    {
      "featureNames": ["accel_x_mean", ...],
      "entries": [
        {"id": "sample-1700000000000", "label": "maps",
         "values": [...], "sampleCount": 42, "durationMs": 1640}
      ]
    }
"""

import json
import logging
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.types import (
    DatasetValidationError,
    FeatureLayoutError,
    FeatureVector,
    ValidationError,
    is_finite_number,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetEntry:
    """One labelled feature vector."""
    id: str
    label: str
    values: Tuple[float, ...]
    sample_count: int
    duration_ms: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "values": list(self.values),
            "sampleCount": self.sample_count,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data, index: int = 0) -> "DatasetEntry":
        where = "entries[%d]" % index
        if not isinstance(data, dict):
            raise DatasetValidationError("%s must be an object" % where)
        entry_id = data.get("id")
        if not isinstance(entry_id, str) or not entry_id:
            raise DatasetValidationError("%s.id must be a non-empty string" % where)
        label = data.get("label")
        if not isinstance(label, str) or not label.strip():
            raise DatasetValidationError("%s.label must be a non-empty string" % where)
        values = data.get("values")
        if not isinstance(values, list) or not all(is_finite_number(v) for v in values):
            raise DatasetValidationError("%s.values must be a list of finite numbers" % where)
        sample_count = data.get("sampleCount")
        if isinstance(sample_count, float) and sample_count.is_integer():
            sample_count = int(sample_count)
        if not isinstance(sample_count, int) or isinstance(sample_count, bool) or sample_count < 0:
            raise DatasetValidationError("%s.sampleCount must be a non-negative integer" % where)
        duration_ms = data.get("durationMs")
        if not is_finite_number(duration_ms) or duration_ms < 0:
            raise DatasetValidationError("%s.durationMs must be a non-negative number" % where)
        return cls(
            id=entry_id,
            label=label,
            values=tuple(float(v) for v in values),
            sample_count=sample_count,
            duration_ms=float(duration_ms),
        )


@dataclass(frozen=True)
class GestureDataset:
    """Feature-name schema plus insertion-ordered entries.

    Invariant: every entry has exactly ``len(feature_names)`` values.
    An empty dataset (no schema yet) adopts the schema of its first entry.
    """

    feature_names: Tuple[str, ...] = ()
    entries: Tuple[DatasetEntry, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "feature_names", tuple(self.feature_names))
        object.__setattr__(self, "entries", tuple(self.entries))
        width = len(self.feature_names)
        for i, entry in enumerate(self.entries):
            if len(entry.values) != width:
                raise FeatureLayoutError(
                    "Entry %d ('%s') has %d values but dataset declares %d features"
                    % (i, entry.id, len(entry.values), width)
                )

    # ------------------------------------------------------------------
    # Copy-on-write mutations
    # ------------------------------------------------------------------

    def ensure_feature_layout(self, names: Sequence[str]) -> Tuple[str, ...]:
        """Return the schema to use for an entry extracted with ``names``.

        Raises:
            FeatureLayoutError: the dataset already has a different schema.
        """
        names = tuple(names)
        if not self.feature_names:
            return names
        if names != self.feature_names:
            raise FeatureLayoutError(
                "Feature layout mismatch. Clear dataset before mixing formats."
            )
        return self.feature_names

    def append(self, entry: DatasetEntry, feature_names: Optional[Sequence[str]] = None) -> "GestureDataset":
        """Return a new dataset with ``entry`` appended.

        Args:
            entry: Entry to add.
            feature_names: Schema the entry was extracted with. Defaults to
                the dataset's own schema (which must then exist).
        """
        if feature_names is None:
            if not self.feature_names:
                raise FeatureLayoutError("Dataset has no feature schema yet; pass feature_names")
            feature_names = self.feature_names
        schema = self.ensure_feature_layout(feature_names)
        return GestureDataset(schema, self.entries + (entry,))

    def add_sample(self, label: str, features: FeatureVector,
                   entry_id: Optional[str] = None) -> Tuple["GestureDataset", DatasetEntry]:
        """Append a freshly extracted feature vector under ``label``."""
        label = (label or "").strip()
        if not label:
            raise ValidationError("Label required: type a label before saving")
        entry = DatasetEntry(
            id=entry_id or self._next_id(),
            label=label,
            values=tuple(features.values),
            sample_count=features.sample_count,
            duration_ms=float(features.duration_ms),
        )
        return self.append(entry, features.names), entry

    def _next_id(self) -> str:
        base = "sample-%d" % int(time.time() * 1000)
        existing = {e.id for e in self.entries}
        candidate, suffix = base, 1
        while candidate in existing:
            candidate = "%s-%d" % (base, suffix)
            suffix += 1
        return candidate

    def subset(self, indices: Sequence[int]) -> "GestureDataset":
        return replace(self, entries=tuple(self.entries[i] for i in indices))

    @staticmethod
    def empty() -> "GestureDataset":
        return GestureDataset()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def __len__(self):
        return len(self.entries)

    @property
    def labels(self) -> List[str]:
        """Distinct labels in first-appearance order."""
        return list(OrderedDict.fromkeys(e.label for e in self.entries))

    def label_counts(self) -> Dict[str, int]:
        counts = Counter(e.label for e in self.entries)
        return {label: counts[label] for label in self.labels}

    def as_matrix(self) -> np.ndarray:
        """Entry values stacked into an ``(N, F)`` float array."""
        if not self.entries:
            return np.zeros((0, len(self.feature_names)), dtype=np.float64)
        return np.array([e.values for e in self.entries], dtype=np.float64)

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "featureNames": list(self.feature_names),
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, payload) -> "GestureDataset":
        """Strictly validate and parse a dataset payload.

        Raises:
            DatasetValidationError: on the first structural violation.
        """
        if not isinstance(payload, dict):
            raise DatasetValidationError("Dataset JSON must be an object")
        names = payload.get("featureNames")
        entries = payload.get("entries")
        if names is None or not isinstance(entries, list):
            raise DatasetValidationError("Dataset JSON missing featureNames or entries.")
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise DatasetValidationError("featureNames must be a list of strings")
        if len(set(names)) != len(names):
            raise DatasetValidationError("featureNames must be unique")
        parsed = [DatasetEntry.from_dict(item, i) for i, item in enumerate(entries)]
        return cls(tuple(names), tuple(parsed))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "GestureDataset":
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise DatasetValidationError("Dataset is not valid JSON: %s" % e)
        return cls.from_dict(payload)

    def save(self, path: str):
        with open(path, "w") as f:
            f.write(self.to_json())
        logger.info("Dataset with %d samples saved to %s", len(self), path)

    @classmethod
    def load(cls, path: str) -> "GestureDataset":
        with open(path, "r") as f:
            dataset = cls.from_json(f.read())
        logger.info("Loaded %d samples (%d features) from %s",
                    len(dataset), len(dataset.feature_names), path)
        return dataset

