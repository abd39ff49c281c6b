"""
Tests for the Gesture Dataset
==============================
"""

import json

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import (
    DatasetValidationError,
    FeatureLayoutError,
    FeatureVector,
    SensorSample,
    ValidationError,
)
from models.feature_extractor import FEATURE_NAMES, extract_features
from training.dataset import DatasetEntry, GestureDataset

NAMES = ("f0", "f1", "f2")


def make_entry(entry_id: str, label: str, values=(0.0, 0.0, 0.0)) -> DatasetEntry:
    return DatasetEntry(id=entry_id, label=label, values=tuple(values),
                        sample_count=10, duration_ms=200.0)


def make_dataset():
    return GestureDataset(NAMES, (
        make_entry("a", "maps", (1.0, 2.0, 3.0)),
        make_entry("b", "whatsapp", (-1.0, 0.5, 0.0)),
        make_entry("c", "maps", (1.5, 2.5, 3.5)),
    ))


class TestGestureDataset:
    """Test suite for copy-on-write dataset operations."""

    def test_empty_adopts_first_schema(self):
        features = FeatureVector(NAMES, (1.0, 2.0, 3.0), sample_count=4, duration_ms=60.0)
        dataset, entry = GestureDataset.empty().add_sample("maps", features)

        assert dataset.feature_names == NAMES
        assert entry.label == "maps"
        assert entry.sample_count == 4
        assert entry.id.startswith("sample-")

    def test_append_leaves_original_untouched(self):
        original = make_dataset()
        grown = original.append(make_entry("d", "maps"))

        assert len(original) == 3
        assert len(grown) == 4
        assert grown.entries[:3] == original.entries

    def test_layout_mismatch(self):
        dataset = make_dataset()
        features = FeatureVector(("x", "y", "z"), (0.0, 0.0, 0.0))
        with pytest.raises(FeatureLayoutError, match="Feature layout mismatch"):
            dataset.add_sample("maps", features)

    def test_value_width_enforced(self):
        with pytest.raises(FeatureLayoutError):
            GestureDataset(NAMES, (make_entry("a", "maps", (1.0, 2.0)),))

    def test_label_required(self):
        features = FeatureVector(NAMES, (1.0, 2.0, 3.0))
        with pytest.raises(ValidationError):
            GestureDataset.empty().add_sample("   ", features)

    def test_unique_ids(self):
        features = FeatureVector(NAMES, (1.0, 2.0, 3.0))
        dataset = GestureDataset.empty()
        for _ in range(3):
            dataset, _ = dataset.add_sample("maps", features)
        ids = [e.id for e in dataset.entries]
        assert len(set(ids)) == 3

    def test_labels_first_appearance(self):
        dataset = make_dataset().append(make_entry("d", "youtube"))
        assert dataset.labels == ["maps", "whatsapp", "youtube"]
        assert dataset.label_counts() == {"maps": 2, "whatsapp": 1, "youtube": 1}

    def test_subset(self):
        subset = make_dataset().subset([2, 0])
        assert [e.id for e in subset.entries] == ["c", "a"]
        assert subset.feature_names == NAMES

    def test_as_matrix(self):
        matrix = make_dataset().as_matrix()
        assert matrix.shape == (3, 3)
        assert matrix[1, 0] == -1.0
        assert GestureDataset.empty().as_matrix().shape == (0, 0)

    def test_with_extracted_features(self):
        samples = [SensorSample(t=i * 10.0, ax=float(i)) for i in range(6)]
        dataset, _ = GestureDataset.empty().add_sample("maps", extract_features(samples))
        assert dataset.feature_names == FEATURE_NAMES
        assert len(dataset.entries[0].values) == 51


class TestDatasetJson:
    """Test suite for dataset import / export."""

    def test_round_trip(self):
        dataset = make_dataset()
        assert GestureDataset.from_json(dataset.to_json()) == dataset

    def test_camel_case_keys(self):
        payload = make_dataset().to_dict()
        assert set(payload) == {"featureNames", "entries"}
        assert set(payload["entries"][0]) == {"id", "label", "values", "sampleCount", "durationMs"}

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "gesture_ml_dataset.json"
        dataset = make_dataset()
        dataset.save(str(path))
        assert GestureDataset.load(str(path)) == dataset

    def test_missing_fields(self):
        with pytest.raises(DatasetValidationError, match="missing featureNames or entries"):
            GestureDataset.from_dict({"entries": []})
        with pytest.raises(DatasetValidationError, match="missing featureNames or entries"):
            GestureDataset.from_dict({"featureNames": ["f0"], "entries": {}})

    def test_wrong_value_count(self):
        payload = make_dataset().to_dict()
        payload["entries"][1]["values"] = [1.0]
        with pytest.raises(DatasetValidationError):
            GestureDataset.from_dict(payload)

    @pytest.mark.parametrize("field,value", [
        ("label", ""),
        ("values", ["a", 1, 2]),
        ("sampleCount", -1),
        ("durationMs", "long"),
        ("id", None),
    ])
    def test_wrong_types(self, field, value):
        payload = make_dataset().to_dict()
        payload["entries"][0][field] = value
        with pytest.raises(DatasetValidationError):
            GestureDataset.from_dict(payload)

    def test_invalid_json(self):
        with pytest.raises(DatasetValidationError):
            GestureDataset.from_json("{not json")

    def test_integral_float_sample_count(self):
        payload = json.loads(make_dataset().to_json())
        payload["entries"][0]["sampleCount"] = 10.0
        assert GestureDataset.from_dict(payload).entries[0].sample_count == 10
