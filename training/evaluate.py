#!/usr/bin/env python3
"""
Held-out accuracy evaluation for the softmax gesture classifier.

Usage::

    python -m training.evaluate gesture_ml_dataset.json
    python -m training.evaluate gesture_ml_dataset.json --testFraction=0.3 --epochs=300 --lr=0.1

Shuffles the dataset, holds out ``max(1, floor(N * testFraction))`` entries,
trains a fresh model on the rest and reports overall and per-label accuracy
on stdout. Exits 1 on any validation failure.
"""

import json
import logging
import math
import sys
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np

from core.types import DatasetValidationError, GestureMLError, ValidationError
from models.softmax_classifier import SoftmaxModel, predict_from_model, train_softmax_model
from training.dataset import GestureDataset
from training.train import CliArgumentParser, parse_positive_int, parse_positive_number

logger = logging.getLogger(__name__)

DEFAULT_TEST_FRACTION = 0.2
DEFAULT_EPOCHS = 250
DEFAULT_LEARNING_RATE = 0.08


@dataclass
class LabelAccuracy:
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


@dataclass
class EvaluationResult:
    """Accuracy of one train/test split."""

    overall_accuracy: float
    total_samples: int
    per_label: Dict[str, LabelAccuracy] = field(default_factory=OrderedDict)

    def summary_lines(self):
        lines = [
            "Overall accuracy: %.2f%%" % (self.overall_accuracy * 100),
            "Total test samples: %d" % self.total_samples,
            "",
            "Per-label accuracy:",
        ]
        for label, stats in self.per_label.items():
            lines.append("  %s: %.2f%% (%d/%d)" % (
                label, stats.accuracy * 100, stats.correct, stats.total))
        return lines


def split_indices(n: int, test_fraction: float, rng=None) -> Tuple[list, list]:
    """Shuffle ``range(n)`` and return ``(test_indices, train_indices)``.

    Both lists keep the shuffled order. ``rng`` is anything with a numpy
    ``Generator.permutation``-compatible method; a fresh unseeded
    generator is used when omitted.
    """
    rng = rng if rng is not None else np.random.default_rng()
    order = [int(i) for i in rng.permutation(n)]
    test_count = max(1, int(math.floor(n * test_fraction)))
    return order[:test_count], order[test_count:]


def evaluate_softmax_on_dataset(dataset: GestureDataset,
                                test_fraction: float = DEFAULT_TEST_FRACTION,
                                epochs: int = DEFAULT_EPOCHS,
                                learning_rate: float = DEFAULT_LEARNING_RATE,
                                rng=None,
                                cancel_event=None) -> Tuple[EvaluationResult, SoftmaxModel]:
    """Train on a random split of ``dataset`` and score the held-out part.

    Raises:
        DatasetValidationError: empty dataset, or fewer than two training
            entries remain after the split.
    """
    if len(dataset) == 0:
        raise DatasetValidationError("Cannot evaluate model: dataset is empty")
    if not 0 < test_fraction < 1:
        raise ValidationError("testFraction must be between 0 and 1 (e.g. 0.2)")

    test_idx, train_idx = split_indices(len(dataset), test_fraction, rng)
    if len(train_idx) < 2:
        raise DatasetValidationError(
            "Not enough training samples after split; collect more data."
        )

    logger.info("Evaluating: %d train / %d test samples", len(train_idx), len(test_idx))
    model = train_softmax_model(dataset.subset(train_idx), epochs=epochs,
                                learning_rate=learning_rate, cancel_event=cancel_event)

    per_label = OrderedDict()
    correct = 0
    for idx in test_idx:
        entry = dataset.entries[idx]
        prediction = predict_from_model(model, entry.values)
        stats = per_label.setdefault(entry.label, LabelAccuracy())
        stats.total += 1
        if prediction.label == entry.label:
            stats.correct += 1
            correct += 1

    total = len(test_idx)
    result = EvaluationResult(
        overall_accuracy=correct / total if total else 0.0,
        total_samples=total,
        per_label=per_label,
    )
    logger.info("Overall accuracy %.2f%% on %d samples", result.overall_accuracy * 100, total)
    return result, model


# =============================================================================
# CLI
# =============================================================================

def parse_args(argv=None):
    parser = CliArgumentParser(
        prog="python -m training.evaluate",
        description="Evaluate the softmax gesture model on a held-out test split.",
        epilog="The dataset JSON is an exported gesture_ml_dataset.json.",
    )
    parser.add_argument("dataset", nargs="?", help="Path to dataset JSON")
    parser.add_argument("--testFraction", dest="test_fraction", default=None,
                        help="Fraction held out for testing, strictly between 0 and 1 (default 0.2)")
    parser.add_argument("--epochs", default=None, help="Training epochs (default 250)")
    parser.add_argument("--lr", default=None, help="Learning rate (default 0.08)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the shuffle (random when omitted)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser, parser.parse_args(argv)


def main(argv=None) -> int:
    from modules.utils.logger import setup_logging

    parser, args = parse_args(argv)
    setup_logging(level=args.log_level)

    if not args.dataset:
        parser.print_usage()
        return 1

    try:
        test_fraction = DEFAULT_TEST_FRACTION
        if args.test_fraction is not None:
            try:
                test_fraction = float(args.test_fraction)
            except ValueError:
                raise ValidationError("testFraction must be between 0 and 1 (e.g. 0.2)")
            if not 0 < test_fraction < 1:
                raise ValidationError("testFraction must be between 0 and 1 (e.g. 0.2)")
        epochs = parse_positive_int(args.epochs, "epochs", DEFAULT_EPOCHS)
        learning_rate = parse_positive_number(args.lr, "lr", DEFAULT_LEARNING_RATE)

        dataset = GestureDataset.load(args.dataset)
        print("Evaluating on %d samples (testFraction=%s, epochs=%d, lr=%s)..."
              % (len(dataset), test_fraction, epochs, learning_rate))
        rng = np.random.default_rng(args.seed)
        result, _ = evaluate_softmax_on_dataset(
            dataset,
            test_fraction=test_fraction,
            epochs=epochs,
            learning_rate=learning_rate,
            rng=rng,
        )
    except (GestureMLError, OSError, json.JSONDecodeError) as e:
        logger.error("%s", e)
        return 1

    print("")
    for line in result.summary_lines():
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
