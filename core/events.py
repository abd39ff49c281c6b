"""
Lightweight event bus for decoupled session notifications.

The session publishes what happened (sample counts, saved examples,
trained models, recognized gestures) and hosts subscribe to whatever they
render or log, without the session knowing about them.

Usage:
    bus = EventBus()
    bus.subscribe(Events.GESTURE_RECOGNIZED, my_handler)
    bus.emit(Events.GESTURE_RECOGNIZED, label="maps", confidence=0.92)
"""

import time
import logging
import threading
from collections import Counter, defaultdict, deque
from typing import Callable

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe publish/subscribe event bus.

    One bus per session. Emits come from the caller's thread, the training
    worker and the status task; listeners run synchronously on whichever
    thread emitted, in descending priority order. A failing listener is
    logged and does not stop the others.
    """

    def __init__(self, max_history: int = 100):
        self._listeners = defaultdict(list)  # event_name -> [(priority, callback)]
        self._lock = threading.Lock()
        self._event_history = deque(maxlen=max_history)
        self._emit_counts = Counter()
        self._enabled = True

    def subscribe(self, event_name: str, callback: Callable, priority: int = 0) -> Callable[[], None]:
        """Register a listener for an event.

        Args:
            event_name: One of the ``Events`` names
            callback: Called with the keyword arguments passed to emit()
            priority: Higher priority callbacks run first (default 0)

        Returns:
            A no-argument function that removes this subscription.
        """
        with self._lock:
            listeners = self._listeners[event_name]
            listeners.append((priority, callback))
            listeners.sort(key=lambda x: -x[0])
        logger.debug("Subscribed to '%s': %s (priority=%d)",
                     event_name, getattr(callback, "__name__", callback), priority)
        return lambda: self.unsubscribe(event_name, callback)

    def unsubscribe(self, event_name: str, callback: Callable):
        with self._lock:
            remaining = [(p, cb) for p, cb in self._listeners.get(event_name, []) if cb is not callback]
            if remaining:
                self._listeners[event_name] = remaining
            else:
                self._listeners.pop(event_name, None)

    def emit(self, event_name: str, **kwargs):
        """Deliver an event to its listeners; a no-op once disabled."""
        if not self._enabled:
            return

        with self._lock:
            listeners = list(self._listeners.get(event_name, ()))
            self._emit_counts[event_name] += 1
            self._event_history.append({
                "event": event_name,
                "time": time.time(),
                "thread": threading.current_thread().name,
                "data_keys": sorted(kwargs),
            })

        for _, callback in listeners:
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error("Event handler error [%s -> %s]: %s",
                             event_name, getattr(callback, "__name__", callback), e)

    def clear(self, event_name: str = None):
        """Remove all listeners, optionally for a specific event."""
        with self._lock:
            if event_name:
                self._listeners.pop(event_name, None)
            else:
                self._listeners.clear()

    def disable(self):
        """Drop all further emits (used once a session is disposed)."""
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def registered_events(self) -> list:
        with self._lock:
            return list(self._listeners.keys())

    @property
    def listener_count(self) -> int:
        with self._lock:
            return sum(len(cbs) for cbs in self._listeners.values())

    def emit_count(self, event_name: str) -> int:
        with self._lock:
            return self._emit_counts[event_name]

    def get_history(self, last_n: int = 10) -> list:
        """Most recent emits, oldest first."""
        with self._lock:
            return list(self._event_history)[-last_n:]


# =============================================================================
# Standard Event Names (constants to avoid typos)
# =============================================================================

class Events:
    """Standard event names published by GestureSession."""

    # Capture
    SAMPLE_COUNT = "sample_count"
    RECORDING_STARTED = "recording_started"
    RECORDING_STOPPED = "recording_stopped"

    # Dataset / templates / model lifecycle
    EXAMPLE_SAVED = "example_saved"
    DATASET_CLEARED = "dataset_cleared"
    TEMPLATES_CLEARED = "templates_cleared"
    MODEL_TRAINED = "model_trained"
    MODEL_CLEARED = "model_cleared"
    TRAINING_FAILED = "training_failed"

    # Recognition
    GESTURE_RECOGNIZED = "gesture_recognized"
    GESTURE_REJECTED = "gesture_rejected"

    # Actions
    ACTION_EXECUTED = "action_executed"
    ACTION_FAILED = "action_failed"
