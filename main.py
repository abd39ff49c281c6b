#!/usr/bin/env python3
"""
Motion Gesture Recognition - offline host.
Replays recorded IMU sequences through a GestureSession.

Architecture:
    - core.GestureSession handles record -> smooth -> classify -> act
    - core.EventBus carries recognition / action notifications
    - LabelActionRouter opens the deep link mapped to an accepted label

Usage:
    python main.py collect maps rec1.json rec2.json --dataset ds.json --templates tpl.json
    python main.py match rec.json --templates tpl.json [--act]
    python main.py predict rec.json --model gesture_ml_model.json [--act]
    python main.py baseline rec.json --dataset ds.json

Sequence files are JSON lists of {"t", "ax", "ay", "az", "gx", "gy", "gz"}.
"""

import sys
import os
import json
import logging

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from modules.utils.config import Config
from modules.utils.logger import setup_logging

from core.events import Events
from core.session import GestureSession
from core.types import GestureMLError, sequence_from_json
from training.train import CliArgumentParser

logger = logging.getLogger(__name__)


def load_sequence(path: str):
    with open(path, "r") as f:
        return sequence_from_json(json.load(f))


def replay(session: GestureSession, path: str):
    """Feed a recorded sequence into the session as if captured live."""
    session.start_recording()
    for sample in load_sequence(path):
        session.record_sample(sample)
    session.stop_recording()


def print_prediction(title: str, prediction):
    print("%s: %s" % (title, prediction.label))
    print("Confidence: %.1f%%" % (prediction.confidence * 100))
    runner_up = prediction.runner_up
    if runner_up is not None:
        print("Runner-up: %s (%.1f%%)" % (runner_up.label, runner_up.confidence * 100))


# =============================================================================
# Commands
# =============================================================================

def cmd_collect(session: GestureSession, args) -> int:
    if args.dataset and os.path.exists(args.dataset):
        session.import_dataset(args.dataset)
    if args.templates and os.path.exists(args.templates):
        session.import_templates(args.templates)

    for path in args.sequences:
        replay(session, path)
        entry = session.save_example(args.label)
        print("Saved %s as '%s' (%s)" % (path, args.label, entry.id))

    if args.dataset:
        session.export_dataset(args.dataset)
    if args.templates:
        session.export_templates(args.templates)
    print("Dataset: %s" % ", ".join(
        "%s=%d" % item for item in session.dataset.label_counts().items()))
    return 0


def cmd_match(session: GestureSession, args) -> int:
    session.import_templates(args.templates)
    replay(session, args.sequence)
    match = session.classify_dtw()
    for line in match.summary_lines():
        print(line)
    if match.label is not None:
        print("Status: %s" % ("accepted" if match.accepted else "low confidence"))
    return 0


def cmd_predict(session: GestureSession, args) -> int:
    session.import_model(args.model)
    replay(session, args.sequence)
    print_prediction("Prediction", session.predict())
    return 0


def cmd_baseline(session: GestureSession, args) -> int:
    session.import_dataset(args.dataset)
    replay(session, args.sequence)
    print_prediction("Baseline prediction", session.predict_baseline())
    return 0


COMMANDS = {
    "collect": cmd_collect,
    "match": cmd_match,
    "predict": cmd_predict,
    "baseline": cmd_baseline,
}


def parse_args(argv=None):
    parser = CliArgumentParser(
        description="Motion Gesture Recognition - offline host"
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to config.yaml"
    )
    parser.add_argument(
        "--actions", type=str, default=None,
        help="Path to actions.yaml"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Add recorded sequences as labelled examples")
    collect.add_argument("label", help="Gesture label")
    collect.add_argument("sequences", nargs="+", help="Sequence JSON files")
    collect.add_argument("--dataset", help="Dataset JSON to extend (created if missing)")
    collect.add_argument("--templates", help="Template JSON to extend (created if missing)")

    match = sub.add_parser("match", help="DTW template match")
    match.add_argument("sequence", help="Sequence JSON file")
    match.add_argument("--templates", required=True, help="Template JSON")

    predict = sub.add_parser("predict", help="Softmax model prediction")
    predict.add_argument("sequence", help="Sequence JSON file")
    predict.add_argument("--model", required=True, help="Model JSON")

    baseline = sub.add_parser("baseline", help="Nearest-neighbour baseline")
    baseline.add_argument("sequence", help="Sequence JSON file")
    baseline.add_argument("--dataset", required=True, help="Dataset JSON")

    for command in (match, predict):
        command.add_argument(
            "--act", action="store_true",
            help="Route accepted results to the action router"
        )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    # Load configuration
    config = Config()
    config.load(config_path=args.config, actions_path=args.actions)
    config.update({
        "session": {"async_actions": False},
        "actions": {"enabled": bool(getattr(args, "act", False))},
    })

    # Setup logging
    log_cfg = config.get_section("logging")
    setup_logging(
        level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        max_size_mb=log_cfg.get("max_size_mb", 10),
        backup_count=log_cfg.get("backup_count", 3),
    )

    session = GestureSession.create(config)
    session.event_bus.subscribe(
        Events.ACTION_EXECUTED,
        lambda outcome: print("Action: %s -> %s" % (outcome.label, outcome.url)),
    )
    session.event_bus.subscribe(
        Events.ACTION_FAILED,
        lambda outcome: print("Action: %s" % outcome.reason),
    )

    try:
        return COMMANDS[args.command](session, args)
    except (GestureMLError, OSError, json.JSONDecodeError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    finally:
        session.dispose()


if __name__ == "__main__":
    sys.exit(main())
