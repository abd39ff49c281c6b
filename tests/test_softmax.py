"""
Tests for the Softmax Classifier
=================================
"""

import math
import threading

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import (
    DatasetValidationError,
    ModelValidationError,
    TrainingCancelledError,
    ValidationError,
)
from models.softmax_classifier import (
    SoftmaxModel,
    predict_from_model,
    softmax,
    train_softmax_model,
)
from training.dataset import DatasetEntry, GestureDataset

NAMES = ("f0", "f1", "f2", "f3")


def make_separable_dataset(per_label: int = 5, seed: int = 0) -> GestureDataset:
    """'maps' clustered around +2, 'whatsapp' around -2 on every feature."""
    rng = np.random.default_rng(seed)
    entries = []
    for label, center in (("maps", 2.0), ("whatsapp", -2.0)):
        for i in range(per_label):
            values = center + rng.normal(scale=0.3, size=len(NAMES))
            entries.append(DatasetEntry(
                id="%s-%d" % (label, i), label=label,
                values=tuple(float(v) for v in values),
                sample_count=20, duration_ms=400.0,
            ))
    return GestureDataset(NAMES, tuple(entries))


@pytest.fixture
def dataset():
    return make_separable_dataset()


@pytest.fixture
def model(dataset):
    return train_softmax_model(dataset, epochs=100, learning_rate=0.1)


class TestSoftmax:
    """Test suite for the softmax function."""

    @pytest.mark.parametrize("logits", [
        [0.0, 0.0],
        [1.0, 2.0, 3.0],
        [-50.0, 10.0, 700.0],
        [1e-3, -1e-3, 5.0, 5.0],
    ])
    def test_sums_to_one(self, logits):
        assert float(np.sum(softmax(logits))) == pytest.approx(1.0)

    def test_shift_invariant(self):
        logits = np.array([0.3, -1.2, 2.5])
        assert softmax(logits + 100.0) == pytest.approx(softmax(logits))

    def test_large_logits_do_not_overflow(self):
        probs = softmax([1000.0, 1000.0])
        assert probs == pytest.approx([0.5, 0.5])

    def test_rows(self):
        probs = softmax(np.array([[0.0, 0.0], [0.0, math.log(3.0)]]))
        assert probs[0] == pytest.approx([0.5, 0.5])
        assert probs[1] == pytest.approx([0.25, 0.75])


class TestTraining:
    """Test suite for train_softmax_model."""

    def test_convergence_scenario(self, model):
        """100 epochs on linearly separable data: last loss beats first."""
        assert len(model.loss_history) == 100
        assert model.loss_history[0] == pytest.approx(math.log(2.0))
        assert model.loss_history[-1] < model.loss_history[0]

    def test_model_fields(self, model, dataset):
        assert model.labels == ["maps", "whatsapp"]
        assert model.feature_names == list(NAMES)
        assert model.weights.shape == (2, 4)
        assert model.biases.shape == (2,)
        assert model.training_samples == 10
        assert model.trained_at > 0
        assert model.feature_means == pytest.approx(dataset.as_matrix().mean(axis=0))

    def test_zero_std_replaced(self):
        entries = (
            DatasetEntry("a", "maps", (1.0, 5.0), 3, 10.0),
            DatasetEntry("b", "whatsapp", (2.0, 5.0), 3, 10.0),
        )
        model = train_softmax_model(GestureDataset(("f0", "f1"), entries), epochs=5)
        assert model.feature_std[1] == 1.0
        assert model.feature_std[0] == pytest.approx(0.5)

    def test_empty_dataset(self):
        with pytest.raises(DatasetValidationError, match="without any dataset entries"):
            train_softmax_model(GestureDataset.empty())

    def test_single_label(self):
        entries = (DatasetEntry("a", "maps", (1.0,), 3, 10.0),
                   DatasetEntry("b", "maps", (2.0,), 3, 10.0))
        with pytest.raises(DatasetValidationError, match="at least two labels"):
            train_softmax_model(GestureDataset(("f0",), entries))

    def test_invalid_hyperparameters(self, dataset):
        with pytest.raises(ValidationError):
            train_softmax_model(dataset, epochs=0)
        with pytest.raises(ValidationError):
            train_softmax_model(dataset, learning_rate=0.0)

    def test_progress_callback(self, dataset):
        seen = []
        train_softmax_model(dataset, epochs=7, on_epoch=lambda epoch, loss: seen.append(epoch))
        assert seen == list(range(7))

    def test_cancel_between_epochs(self, dataset):
        cancel = threading.Event()

        def stop_after_three(epoch, loss):
            if epoch == 2:
                cancel.set()

        with pytest.raises(TrainingCancelledError):
            train_softmax_model(dataset, epochs=50, cancel_event=cancel,
                                on_epoch=stop_after_three)

    def test_deterministic(self, dataset):
        a = train_softmax_model(dataset, epochs=20, learning_rate=0.1)
        b = train_softmax_model(dataset, epochs=20, learning_rate=0.1)
        assert np.array_equal(a.weights, b.weights)
        assert a.loss_history == b.loss_history


class TestPrediction:
    """Test suite for predict_from_model."""

    def test_predicts_training_clusters(self, model):
        maps = predict_from_model(model, [2.0, 2.0, 2.0, 2.0])
        whatsapp = predict_from_model(model, [-2.0, -2.0, -2.0, -2.0])

        assert maps.label == "maps"
        assert whatsapp.label == "whatsapp"
        assert maps.confidence > 0.5

    def test_distribution_sorted_and_normalized(self, model):
        result = predict_from_model(model, [1.0, 1.5, 2.0, 0.5])
        confidences = [lc.confidence for lc in result.distribution]

        assert confidences == sorted(confidences, reverse=True)
        assert sum(confidences) == pytest.approx(1.0)
        assert result.confidence == confidences[0]

    def test_empty_model(self):
        empty = SoftmaxModel([], [], np.zeros(0), np.ones(0), np.zeros((0, 0)), np.zeros(0))
        with pytest.raises(ModelValidationError, match="Model is empty"):
            predict_from_model(empty, [])

    def test_feature_count_mismatch(self, model):
        with pytest.raises(ValidationError):
            predict_from_model(model, [1.0, 2.0])


class TestModelJson:
    """Test suite for model import / export."""

    def test_round_trip(self, model):
        restored = SoftmaxModel.from_dict(model.to_dict())

        assert restored.labels == model.labels
        assert np.allclose(restored.weights, model.weights)
        assert restored.loss_history == model.loss_history
        query = [0.4, 0.2, -0.1, 0.3]
        assert predict_from_model(restored, query).as_dict() == pytest.approx(
            predict_from_model(model, query).as_dict())

    def test_save_and_load(self, model, tmp_path):
        path = tmp_path / "gesture_ml_model.json"
        model.save(str(path))
        assert SoftmaxModel.load(str(path)).labels == ["maps", "whatsapp"]

    def test_json_keys(self, model):
        assert set(model.to_dict()) == {
            "labels", "featureNames", "featureMeans", "featureStd", "weights",
            "biases", "trainedAt", "trainingSamples", "lossHistory",
        }

    def test_missing_field(self, model):
        payload = model.to_dict()
        del payload["weights"]
        with pytest.raises(ModelValidationError, match="weights"):
            SoftmaxModel.from_dict(payload)

    def test_duplicate_labels(self, model):
        payload = model.to_dict()
        payload["labels"] = ["maps", "maps"]
        with pytest.raises(ModelValidationError, match="unique"):
            SoftmaxModel.from_dict(payload)

    def test_zero_std(self, model):
        payload = model.to_dict()
        payload["featureStd"][0] = 0
        with pytest.raises(ModelValidationError):
            SoftmaxModel.from_dict(payload)

    def test_shape_mismatch(self, model):
        payload = model.to_dict()
        payload["weights"][1] = payload["weights"][1][:-1]
        with pytest.raises(ModelValidationError):
            SoftmaxModel.from_dict(payload)

        payload = model.to_dict()
        payload["biases"].append(0.0)
        with pytest.raises(ModelValidationError):
            SoftmaxModel.from_dict(payload)

    def test_metadata_required(self, model):
        for key in ("trainedAt", "trainingSamples", "lossHistory"):
            payload = model.to_dict()
            del payload[key]
            with pytest.raises(ModelValidationError, match="missing fields: %s" % key):
                SoftmaxModel.from_dict(payload)

    def test_metadata_must_be_integral(self, model):
        payload = model.to_dict()
        payload["trainingSamples"] = 7.5
        with pytest.raises(ModelValidationError, match="trainingSamples"):
            SoftmaxModel.from_dict(payload)

        payload = model.to_dict()
        payload["trainedAt"] = "yesterday"
        with pytest.raises(ModelValidationError, match="trainedAt"):
            SoftmaxModel.from_dict(payload)

        payload = model.to_dict()
        payload["trainingSamples"] = 8.0
        assert SoftmaxModel.from_dict(payload).training_samples == 8
