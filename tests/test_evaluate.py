"""
Tests for Evaluation and the Nearest-Neighbour Baseline
========================================================
"""

import math

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import DatasetValidationError, ValidationError
from models.nearest_neighbor import neighbor_weights, predict_nearest_neighbor
from training.dataset import DatasetEntry, GestureDataset
from training.evaluate import (
    EvaluationResult,
    LabelAccuracy,
    evaluate_softmax_on_dataset,
    split_indices,
)

NAMES = ("f0", "f1", "f2")


def make_dataset(labels=("maps", "whatsapp"), per_label: int = 5, seed: int = 1) -> GestureDataset:
    """Well separated clusters, one per label, centered at 0, 4, 8, ..."""
    rng = np.random.default_rng(seed)
    entries = []
    for idx, label in enumerate(labels):
        for i in range(per_label):
            values = idx * 4.0 + rng.normal(scale=0.2, size=len(NAMES))
            entries.append(DatasetEntry(
                id="%s-%d" % (label, i), label=label,
                values=tuple(float(v) for v in values),
                sample_count=15, duration_ms=300.0,
            ))
    return GestureDataset(NAMES, tuple(entries))


class FixedPermutation:
    """Stand-in rng whose permutation is fixed."""

    def __init__(self, order):
        self._order = list(order)

    def permutation(self, n):
        assert n == len(self._order)
        return np.array(self._order)


class TestSplit:
    """Test suite for split_indices."""

    def test_half_split(self):
        test_idx, train_idx = split_indices(10, 0.5, np.random.default_rng(0))
        assert len(test_idx) == 5
        assert len(train_idx) == 5
        assert sorted(test_idx + train_idx) == list(range(10))

    def test_at_least_one_test_entry(self):
        test_idx, train_idx = split_indices(4, 0.1, np.random.default_rng(0))
        assert len(test_idx) == 1
        assert len(train_idx) == 3

    def test_floor(self):
        test_idx, _ = split_indices(9, 0.25, np.random.default_rng(0))
        assert len(test_idx) == math.floor(9 * 0.25)


class TestEvaluate:
    """Test suite for evaluate_softmax_on_dataset."""

    def test_half_split_scenario(self):
        dataset = make_dataset()
        rng = FixedPermutation([0, 5, 1, 6, 2, 7, 3, 8, 4, 9])
        result, model = evaluate_softmax_on_dataset(dataset, test_fraction=0.5, epochs=50, rng=rng)

        assert result.total_samples == 5
        assert sum(stats.total for stats in result.per_label.values()) == 5
        assert model.training_samples == 5

    def test_fixed_split_counts(self):
        dataset = make_dataset()
        # entries 0-4 are maps, 5-9 whatsapp; hold out 2 maps and 3 whatsapp
        rng = FixedPermutation([5, 0, 6, 1, 7, 2, 8, 3, 9, 4])
        result, model = evaluate_softmax_on_dataset(dataset, test_fraction=0.5, rng=rng)

        assert list(result.per_label) == ["whatsapp", "maps"]
        assert result.per_label["whatsapp"].total == 3
        assert result.per_label["maps"].total == 2
        assert model.labels == ["maps", "whatsapp"]

    def test_separable_data_is_accurate(self):
        dataset = make_dataset(per_label=8)
        result, _ = evaluate_softmax_on_dataset(dataset, test_fraction=0.25, rng=np.random.default_rng(5))

        assert result.total_samples == 4
        assert result.overall_accuracy == pytest.approx(1.0)

    def test_seeded_runs_repeat(self):
        dataset = make_dataset(labels=("maps", "whatsapp", "youtube"), per_label=6)
        first, _ = evaluate_softmax_on_dataset(dataset, rng=np.random.default_rng(9))
        second, _ = evaluate_softmax_on_dataset(dataset, rng=np.random.default_rng(9))

        assert first.overall_accuracy == second.overall_accuracy
        assert list(first.per_label) == list(second.per_label)

    def test_empty_dataset(self):
        with pytest.raises(DatasetValidationError, match="dataset is empty"):
            evaluate_softmax_on_dataset(GestureDataset.empty())

    def test_too_few_training_entries(self):
        dataset = make_dataset(per_label=1)
        with pytest.raises(DatasetValidationError, match="Not enough training samples"):
            evaluate_softmax_on_dataset(dataset, test_fraction=0.5)

    @pytest.mark.parametrize("fraction", [0.0, 1.0, -0.2, 1.5])
    def test_fraction_bounds(self, fraction):
        with pytest.raises(ValidationError):
            evaluate_softmax_on_dataset(make_dataset(), test_fraction=fraction)


class TestEvaluationResult:
    """Test suite for report formatting."""

    def test_summary_lines(self):
        result = EvaluationResult(
            overall_accuracy=0.75,
            total_samples=4,
            per_label={"maps": LabelAccuracy(2, 2), "whatsapp": LabelAccuracy(1, 2)},
        )
        lines = result.summary_lines()

        assert lines[0] == "Overall accuracy: 75.00%"
        assert lines[1] == "Total test samples: 4"
        assert "  maps: 100.00% (2/2)" in lines
        assert "  whatsapp: 50.00% (1/2)" in lines

    def test_label_accuracy_zero_total(self):
        assert LabelAccuracy().accuracy == 0.0


class TestNearestNeighbor:
    """Test suite for the nearest-neighbour baseline."""

    def test_identical_entry_has_highest_weight(self):
        dataset = make_dataset()
        query = dataset.entries[3].values
        weights = neighbor_weights(dataset, query)

        assert weights[3] == pytest.approx(1.0)
        assert all(weights[3] > w for i, w in enumerate(weights) if i != 3)

    def test_predicts_cluster(self):
        dataset = make_dataset()
        result = predict_nearest_neighbor(dataset, [4.0, 4.0, 4.0])

        assert result.label == "whatsapp"
        assert sum(result.as_dict().values()) == pytest.approx(1.0)

    def test_weight_shares(self):
        entries = (
            DatasetEntry("a", "maps", (0.0,), 1, 0.0),
            DatasetEntry("b", "whatsapp", (1.0,), 1, 0.0),
        )
        result = predict_nearest_neighbor(GestureDataset(("f0",), entries), [0.0])
        expected = 1.0 / (1.0 + math.exp(-1.0))

        assert result.label == "maps"
        assert result.confidence == pytest.approx(expected)

    def test_far_query_falls_back_to_total_one(self):
        entries = (DatasetEntry("a", "maps", (0.0,), 1, 0.0),)
        result = predict_nearest_neighbor(GestureDataset(("f0",), entries), [1e6])
        assert result.label == "maps"
        assert result.confidence == 0.0

    def test_empty_dataset(self):
        with pytest.raises(DatasetValidationError, match="Dataset is empty"):
            predict_nearest_neighbor(GestureDataset.empty(), [1.0])

    def test_length_mismatch(self):
        with pytest.raises(ValidationError):
            predict_nearest_neighbor(make_dataset(), [1.0])
