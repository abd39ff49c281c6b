#!/usr/bin/env python3
"""
Standalone training script for the softmax gesture classifier.

Usage::

    # Train from an exported dataset, writing gesture_ml_model.json
    python -m training.train gesture_ml_dataset.json

    # Custom output path and hyper-parameters
    python -m training.train gesture_ml_dataset.json model.json --epochs=600 --lr=0.05

The model JSON can be imported back into a session (``import_model``) or
used offline with ``python main.py predict``.
"""

import argparse
import json
import logging
import math
import os
import sys
import time

from core.types import GestureMLError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "gesture_ml_model.json"
DEFAULT_EPOCHS = 400
DEFAULT_LEARNING_RATE = 0.06


class CliArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit 1, like every other bad input.

    ``--help`` still exits 0.
    """

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, "%s: error: %s\n" % (self.prog, message))


def parse_args(argv=None):
    parser = CliArgumentParser(
        prog="python -m training.train",
        description="Train the softmax gesture model from a dataset JSON.",
    )
    parser.add_argument("dataset", nargs="?", help="Path to dataset JSON")
    parser.add_argument("output", nargs="?", default=DEFAULT_OUTPUT,
                        help="Where to write the model JSON (default %s)" % DEFAULT_OUTPUT)
    parser.add_argument("--epochs", default=None,
                        help="Number of training epochs (default %d)" % DEFAULT_EPOCHS)
    parser.add_argument("--lr", default=None,
                        help="Learning rate (default %s)" % DEFAULT_LEARNING_RATE)
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser, parser.parse_args(argv)


def parse_positive_number(raw, name: str, default: float) -> float:
    """Parse a CLI flag that must be a positive finite number."""
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("%s must be a positive number" % name)
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("%s must be a positive number" % name)
    return value


def parse_positive_int(raw, name: str, default: int) -> int:
    value = parse_positive_number(raw, name, default)
    if not float(value).is_integer():
        raise ValidationError("%s must be a positive integer" % name)
    return int(value)


def main(argv=None) -> int:
    from modules.utils.logger import setup_logging
    from models.softmax_classifier import train_softmax_model
    from training.dataset import GestureDataset

    parser, args = parse_args(argv)
    setup_logging(level=args.log_level)

    if not args.dataset:
        parser.print_usage()
        return 1

    try:
        epochs = parse_positive_int(args.epochs, "epochs", DEFAULT_EPOCHS)
        learning_rate = parse_positive_number(args.lr, "lr", DEFAULT_LEARNING_RATE)

        dataset = GestureDataset.load(args.dataset)
        logger.info("Training on %d samples across %d features...",
                    len(dataset), len(dataset.feature_names))

        start_time = time.time()
        model = train_softmax_model(dataset, epochs=epochs, learning_rate=learning_rate)
        elapsed = time.time() - start_time

        output_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(output_dir, exist_ok=True)
        model.save(args.output)
    except (GestureMLError, OSError, json.JSONDecodeError) as e:
        logger.error("%s", e)
        return 1

    logger.info("=" * 60)
    logger.info("Training complete in %.1f seconds", elapsed)
    logger.info("Labels: %s", ", ".join(model.labels))
    logger.info("Final loss: %.4f (first epoch %.4f)",
                model.loss_history[-1], model.loss_history[0])
    logger.info("Model written to %s", os.path.abspath(args.output))
    logger.info("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
