"""
Tests for Logging Utilities
============================
"""

import logging
import time

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from modules.utils.logger import RecognitionLog, log_timing, setup_logging


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test suite for setup_logging."""

    def test_console_only(self, restore_root):
        root = setup_logging(level="warning")
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_file_handler(self, restore_root, tmp_path):
        log_file = tmp_path / "logs" / "gestures.log"
        root = setup_logging(level="INFO", log_file=str(log_file))

        assert len(root.handlers) == 2
        logging.getLogger("gesture.test").debug("written to file only")
        for handler in root.handlers:
            handler.flush()
        assert "written to file only" in log_file.read_text()

    def test_repeat_calls_do_not_stack(self, restore_root):
        setup_logging()
        root = setup_logging()
        assert len(root.handlers) == 1


class TestRecognitionLog:
    """Test suite for RecognitionLog."""

    def test_history_and_summary(self):
        log = RecognitionLog()
        log.log_gesture("maps", 0.9, "dtw", accepted=True, latency_ms=3.2)
        log.log_gesture("maps", 0.4, "softmax", accepted=False)
        log.log_gesture("whatsapp", 0.8, "softmax")
        log.log_action("maps", "geo:0,0?q=coffee", opened=True, reason="opened")

        summary = log.summary()
        assert summary["total"] == 3
        assert summary["accepted"] == 2
        assert summary["by_method"] == {"dtw": 1, "softmax": 2}
        assert summary["by_label"] == {"maps": 1, "whatsapp": 1}
        assert summary["actions_opened"] == 1
        assert log.get_history(last_n=1)[0]["label"] == "whatsapp"
        assert log.get_actions()[0]["url"] == "geo:0,0?q=coffee"

    def test_history_is_bounded(self):
        log = RecognitionLog(max_history=3)
        for i in range(5):
            log.log_gesture("g%d" % i, 0.5, "baseline")
        assert [g["label"] for g in log.get_history()] == ["g2", "g3", "g4"]
        assert log.total_gestures == 3

    def test_unlabelled_rejection(self):
        log = RecognitionLog()
        log.log_gesture(None, 0.0, "dtw", accepted=False)
        assert log.summary()["by_label"] == {}


class TestLogTiming:
    """Test suite for the log_timing decorator."""

    def test_bare_decorator(self, caplog):
        @log_timing
        def add(a, b):
            return a + b

        with caplog.at_level(logging.DEBUG):
            assert add(2, 3) == 5
        assert any("add took" in r.getMessage() for r in caplog.records)
        assert add.__name__ == "add"

    def test_slow_call_warns(self, caplog):
        @log_timing(slow_ms=1)
        def sleepy():
            time.sleep(0.02)
            return "done"

        with caplog.at_level(logging.DEBUG):
            assert sleepy() == "done"
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings and "budget" in warnings[0].getMessage()
