"""
Multinomial logistic regression (softmax) over extracted gesture features.

Training is plain full-batch gradient descent:
    - population mean/std per feature, frozen at training time (std 0 → 1)
    - zero-initialized weights [L × F] and biases [L]
    - one update per epoch, step size ``learning_rate / N``
    - mean cross-entropy per epoch appended to ``loss_history``

Model JSON::

    {"labels", "featureNames", "featureMeans", "featureStd", "weights",
     "biases", "trainedAt", "trainingSamples", "lossHistory"}
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from core.types import (
    DatasetValidationError,
    ModelValidationError,
    PredictionResult,
    TrainingCancelledError,
    ValidationError,
    is_finite_number,
)
from modules.utils.logger import log_timing
from training.dataset import GestureDataset

logger = logging.getLogger(__name__)

DEFAULT_EPOCHS = 200
DEFAULT_LEARNING_RATE = 0.05
_MIN_PROB = 1e-9


def softmax(logits) -> np.ndarray:
    """Numerically stable softmax over the last axis.

    A zero denominator is replaced by 1 instead of dividing by zero.
    """
    logits = np.asarray(logits, dtype=np.float64)
    shifted = np.exp(logits - np.max(logits, axis=-1, keepdims=True))
    total = np.sum(shifted, axis=-1, keepdims=True)
    total[total == 0] = 1.0
    return shifted / total


@dataclass
class SoftmaxModel:
    """Trained classifier parameters plus the normalization it was fit with."""

    labels: List[str]
    feature_names: List[str]
    feature_means: np.ndarray
    feature_std: np.ndarray
    weights: np.ndarray
    biases: np.ndarray
    trained_at: int = 0
    training_samples: int = 0
    loss_history: List[float] = field(default_factory=list)

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    @property
    def num_features(self) -> int:
        return len(self.feature_names)

    def normalize(self, values) -> np.ndarray:
        return (np.asarray(values, dtype=np.float64) - self.feature_means) / self.feature_std

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "labels": list(self.labels),
            "featureNames": list(self.feature_names),
            "featureMeans": self.feature_means.tolist(),
            "featureStd": self.feature_std.tolist(),
            "weights": self.weights.tolist(),
            "biases": self.biases.tolist(),
            "trainedAt": self.trained_at,
            "trainingSamples": self.training_samples,
            "lossHistory": list(self.loss_history),
        }

    @classmethod
    def from_dict(cls, payload) -> "SoftmaxModel":
        """Strictly validate and parse a model payload.

        Raises:
            ModelValidationError: missing keys, wrong types, inconsistent
                shapes, duplicate labels or a zero std entry.
        """
        if not isinstance(payload, dict):
            raise ModelValidationError("Model JSON must be an object")
        required = ("labels", "featureNames", "featureMeans", "featureStd",
                    "weights", "biases", "trainedAt", "trainingSamples", "lossHistory")
        missing = [k for k in required if k not in payload]
        if missing:
            raise ModelValidationError("Model JSON missing fields: %s" % ", ".join(missing))

        labels = payload["labels"]
        names = payload["featureNames"]
        if not isinstance(labels, list) or not all(isinstance(l, str) and l for l in labels):
            raise ModelValidationError("labels must be a list of non-empty strings")
        if len(set(labels)) != len(labels):
            raise ModelValidationError("labels must be unique")
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ModelValidationError("featureNames must be a list of strings")

        num_labels, num_features = len(labels), len(names)
        means = _number_list(payload["featureMeans"], "featureMeans", num_features)
        std = _number_list(payload["featureStd"], "featureStd", num_features)
        if any(s == 0 for s in std):
            raise ModelValidationError("featureStd must not contain zeros")
        biases = _number_list(payload["biases"], "biases", num_labels)

        weights = payload["weights"]
        if not isinstance(weights, list) or len(weights) != num_labels:
            raise ModelValidationError(
                "weights must have one row per label (%d)" % num_labels
            )
        rows = [_number_list(row, "weights[%d]" % i, num_features)
                for i, row in enumerate(weights)]

        trained_at = payload["trainedAt"]
        training_samples = payload["trainingSamples"]
        for key, value in (("trainedAt", trained_at), ("trainingSamples", training_samples)):
            if not is_finite_number(value) or value != int(value) or value < 0:
                raise ModelValidationError("%s must be a non-negative integer" % key)
        history = payload["lossHistory"]
        if not isinstance(history, list) or not all(is_finite_number(v) for v in history):
            raise ModelValidationError("lossHistory must be a list of numbers")

        return cls(
            labels=list(labels),
            feature_names=list(names),
            feature_means=np.array(means, dtype=np.float64),
            feature_std=np.array(std, dtype=np.float64),
            weights=np.array(rows, dtype=np.float64).reshape(num_labels, num_features),
            biases=np.array(biases, dtype=np.float64),
            trained_at=int(trained_at),
            training_samples=int(training_samples),
            loss_history=[float(v) for v in history],
        )

    def save(self, path: str):
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Model (%d labels) saved to %s", self.num_classes, path)

    @classmethod
    def load(cls, path: str) -> "SoftmaxModel":
        with open(path, "r") as f:
            try:
                payload = json.load(f)
            except json.JSONDecodeError as e:
                raise ModelValidationError("Model is not valid JSON: %s" % e)
        model = cls.from_dict(payload)
        logger.info("Loaded model from %s: labels=%s", path, model.labels)
        return model

    def __repr__(self):
        return "SoftmaxModel(labels=%s, features=%d, samples=%d)" % (
            self.labels, self.num_features, self.training_samples)


def _number_list(value, name: str, expected_len: int) -> List[float]:
    if not isinstance(value, list) or not all(is_finite_number(v) for v in value):
        raise ModelValidationError("%s must be a list of finite numbers" % name)
    if len(value) != expected_len:
        raise ModelValidationError(
            "%s has %d values, expected %d" % (name, len(value), expected_len)
        )
    return [float(v) for v in value]


# =============================================================================
# Training
# =============================================================================

def _feature_normalization(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    means = matrix.mean(axis=0)
    std = np.sqrt(np.mean((matrix - means) ** 2, axis=0))
    std[std == 0] = 1.0
    return means, std


@log_timing
def train_softmax_model(dataset: GestureDataset,
                        epochs: int = DEFAULT_EPOCHS,
                        learning_rate: float = DEFAULT_LEARNING_RATE,
                        cancel_event: Optional[threading.Event] = None,
                        on_epoch: Optional[Callable[[int, float], None]] = None) -> SoftmaxModel:
    """Fit a softmax classifier to every entry of ``dataset``.

    Args:
        dataset: Labelled feature vectors (≥ 1 entry, ≥ 2 labels).
        epochs: Number of full-batch gradient steps.
        learning_rate: Step size, divided by the entry count.
        cancel_event: Checked before each epoch; when set,
            ``TrainingCancelledError`` is raised and no partial model escapes.
        on_epoch: Called with ``(epoch_index, mean_loss)`` after each epoch.

    Raises:
        DatasetValidationError: empty dataset or fewer than two labels.
    """
    if len(dataset) == 0:
        raise DatasetValidationError("Cannot train model without any dataset entries")
    labels = dataset.labels
    if len(labels) < 2:
        raise DatasetValidationError("Need at least two labels to train the model")
    if epochs < 1:
        raise ValidationError("epochs must be a positive integer")
    if not learning_rate > 0:
        raise ValidationError("learning_rate must be positive")

    matrix = dataset.as_matrix()
    n, num_features = matrix.shape
    means, std = _feature_normalization(matrix)
    x = (matrix - means) / std

    label_index = {label: i for i, label in enumerate(labels)}
    targets = np.array([label_index[e.label] for e in dataset.entries])
    one_hot = np.zeros((n, len(labels)), dtype=np.float64)
    one_hot[np.arange(n), targets] = 1.0

    weights = np.zeros((len(labels), num_features), dtype=np.float64)
    biases = np.zeros(len(labels), dtype=np.float64)
    loss_history = []
    scale = learning_rate / n

    logger.info("Training softmax: %d samples, %d features, %d labels, %d epochs, lr=%.4f",
                n, num_features, len(labels), epochs, learning_rate)

    for epoch in range(epochs):
        if cancel_event is not None and cancel_event.is_set():
            raise TrainingCancelledError("Training cancelled at epoch %d" % epoch)

        probs = softmax(x @ weights.T + biases)
        true_probs = probs[np.arange(n), targets]
        loss = float(np.sum(-np.log(np.maximum(true_probs, _MIN_PROB)))) / n

        error = probs - one_hot
        weights -= (error.T @ x) * scale
        biases -= error.sum(axis=0) * scale
        loss_history.append(loss)

        if on_epoch is not None:
            on_epoch(epoch, loss)

    logger.info("Training complete: loss %.4f -> %.4f", loss_history[0], loss_history[-1])

    return SoftmaxModel(
        labels=list(labels),
        feature_names=list(dataset.feature_names),
        feature_means=means,
        feature_std=std,
        weights=weights,
        biases=biases,
        trained_at=int(time.time() * 1000),
        training_samples=n,
        loss_history=loss_history,
    )


# =============================================================================
# Prediction
# =============================================================================

def predict_from_model(model: SoftmaxModel, values: Sequence[float]) -> PredictionResult:
    """Classify one feature vector with a trained model.

    Raises:
        ModelValidationError: the model has no labels.
        ValidationError: ``values`` length differs from the model's features.
    """
    if not model.labels:
        raise ModelValidationError("Model is empty")
    if len(values) != model.num_features:
        raise ValidationError(
            "Feature count mismatch: model expects %d, got %d"
            % (model.num_features, len(values))
        )
    probs = softmax(model.weights @ model.normalize(values) + model.biases)
    best = int(np.argmax(probs))
    return PredictionResult.from_scores(
        zip(model.labels, probs.tolist()),
        best_label=model.labels[best],
    )
