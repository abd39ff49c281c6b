"""
Nearest-neighbour baseline in raw (un-normalized) feature space.

Every stored entry votes for its label with weight ``exp(-distance)``;
confidences are each label's share of the total weight.
"""

import logging
from collections import OrderedDict
from typing import Sequence

import numpy as np

from core.types import DatasetValidationError, PredictionResult, ValidationError
from training.dataset import GestureDataset

logger = logging.getLogger(__name__)


def neighbor_weights(dataset: GestureDataset, values: Sequence[float]) -> np.ndarray:
    """``exp(-euclidean distance)`` from ``values`` to every entry, in entry order."""
    query = np.asarray(values, dtype=np.float64)
    matrix = dataset.as_matrix()
    if query.shape[0] != matrix.shape[1]:
        raise ValidationError(
            "Feature count mismatch: dataset has %d features, got %d"
            % (matrix.shape[1], query.shape[0])
        )
    distances = np.sqrt(np.sum((matrix - query) ** 2, axis=1))
    return np.exp(-distances)


def predict_nearest_neighbor(dataset: GestureDataset, values: Sequence[float]) -> PredictionResult:
    """Distance-weighted vote over every dataset entry.

    Raises:
        DatasetValidationError: the dataset is empty.
    """
    if len(dataset) == 0:
        raise DatasetValidationError("Dataset is empty")

    per_label = OrderedDict()
    for entry, weight in zip(dataset.entries, neighbor_weights(dataset, values).tolist()):
        per_label[entry.label] = per_label.get(entry.label, 0.0) + weight

    total = sum(per_label.values()) or 1.0
    result = PredictionResult.from_scores(
        (label, weight / total) for label, weight in per_label.items()
    )
    logger.debug("Nearest-neighbour: %s", result)
    return result
