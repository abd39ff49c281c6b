"""
Logging setup and the recognition event log.

    - setup_logging: console handler plus optional rotating file
    - RecognitionLog: bounded history of classifications and actions
    - log_timing: DEBUG timing for hot paths, WARNING past a budget
"""

import os
import logging
import logging.handlers
import time
from collections import Counter, deque
from functools import wraps

CONSOLE_FORMAT = "%(asctime)s  %(levelname)-5s  %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)-28s | %(message)s"
DATE_FORMAT = "%H:%M:%S"


def _console_handler(level):
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(log_file, max_size_mb, backup_count):
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=int(max_size_mb * 1024 * 1024),
        backupCount=backup_count,
    )
    # The file keeps everything, including log_timing output
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure the root logger for the CLIs and the session host.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_logger.addHandler(_console_handler(numeric_level))
    if log_file:
        root_logger.addHandler(_file_handler(log_file, max_size_mb, backup_count))
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(numeric_level)

    return root_logger


class RecognitionLog:
    """Bounded in-memory record of classifications and dispatched actions.

    Every entry is also written to the ``gesture_events`` logger so a log
    file carries the same trail.
    """

    def __init__(self, max_history=500):
        self.logger = logging.getLogger("gesture_events")
        self._gestures = deque(maxlen=max_history)
        self._actions = deque(maxlen=max_history)

    def log_gesture(self, label, confidence, method, accepted=True, latency_ms=None):
        """Record one classification (``method`` is dtw, softmax or baseline)."""
        self._gestures.append({
            "timestamp": time.time(),
            "label": label,
            "confidence": confidence,
            "method": method,
            "accepted": accepted,
            "latency_ms": latency_ms,
        })
        self.logger.info(
            "%-8s %-15s conf=%.2f %s%s",
            method,
            label or "-",
            confidence,
            "accepted" if accepted else "rejected",
            " (%.1fms)" % latency_ms if latency_ms is not None else "",
        )

    def log_action(self, label, url, opened=True, reason=""):
        self._actions.append({
            "timestamp": time.time(),
            "label": label,
            "url": url,
            "opened": opened,
            "reason": reason,
        })
        if opened:
            self.logger.info("action   %-15s -> %s", label, url)
        else:
            self.logger.info("action   %-15s not opened: %s", label, reason)

    def get_history(self, last_n=None):
        """Recent classifications, oldest first."""
        history = list(self._gestures)
        if last_n:
            return history[-last_n:]
        return history

    def get_actions(self, last_n=None):
        actions = list(self._actions)
        if last_n:
            return actions[-last_n:]
        return actions

    def summary(self):
        """Counts per method and per accepted label."""
        return {
            "total": len(self._gestures),
            "accepted": sum(1 for g in self._gestures if g["accepted"]),
            "by_method": dict(Counter(g["method"] for g in self._gestures)),
            "by_label": dict(Counter(g["label"] for g in self._gestures if g["accepted"])),
            "actions_opened": sum(1 for a in self._actions if a["opened"]),
        }

    @property
    def total_gestures(self):
        return len(self._gestures)


def log_timing(func=None, *, slow_ms=None):
    """Log execution time at DEBUG; at WARNING once ``slow_ms`` is exceeded.

    Usable bare (``@log_timing``) or with options (``@log_timing(slow_ms=50)``).
    """
    if func is None:
        return lambda f: log_timing(f, slow_ms=slow_ms)

    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        if slow_ms is not None and elapsed > slow_ms:
            logger.warning("%s took %.1fms (budget %.0fms)", func.__name__, elapsed, slow_ms)
        else:
            logger.debug("%s took %.2fms", func.__name__, elapsed)
        return result

    return wrapper
