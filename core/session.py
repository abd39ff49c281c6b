"""
Gesture capture / recognition session.

Owns the live state of one recording host: the capture buffer, the
dataset, the DTW template store and the trained model. Encapsulates the
record -> smooth -> {save | classify} -> act flow that a UI or a headless
host drives through method calls.

Architecture:
    record_sample() -> buffer -> moving_average
        save_example  -> SensorFeatureExtractor -> GestureDataset
                      -> TemplateStore (smoothed raw sequence)
        classify_dtw(_async) -> DTWMatcher
        predict       -> SoftmaxModel
        predict_baseline -> nearest neighbour over the dataset
    accepted results -> LabelActionRouter

Dataset, templates and model are immutable snapshots swapped under a
lock. Training, evaluation and async DTW matches run on a single
background worker and can be cancelled; clearing or replacing the
dataset or model cancels them and discards any late training result.
"""

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Sequence, Union

import numpy as np

from core.events import EventBus, Events
from core.scheduler import PeriodicTask
from core.types import (
    DatasetValidationError,
    GestureMLError,
    ModelValidationError,
    PredictionResult,
    SensorSample,
    SequenceValidationError,
    TrainingCancelledError,
    ValidationError,
)
from models.dtw_matcher import DTWMatch, DTWMatcher, TemplateStore
from models.feature_extractor import SensorFeatureExtractor
from models.nearest_neighbor import predict_nearest_neighbor
from models.softmax_classifier import SoftmaxModel, predict_from_model, train_softmax_model
from modules.recognition.preprocessing import moving_average
from modules.utils.logger import RecognitionLog
from training.dataset import DatasetEntry, GestureDataset
from training.evaluate import evaluate_softmax_on_dataset

logger = logging.getLogger(__name__)


def _lookup(config, key_path: str, default=None):
    """Read ``a.b`` from a Config instance or a plain nested dict."""
    if config is None:
        return default
    if not isinstance(config, dict):
        return config.get(key_path, default)
    value = config
    for key in key_path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


class GestureSession:
    """Caller-owned recognition session with explicit create / tick / dispose."""

    def __init__(self, settings: dict, event_bus: Optional[EventBus] = None, router=None):
        self._smoothing_window = settings.get("smoothing_window", 3)
        self._train_epochs = settings.get("train_epochs", 250)
        self._train_lr = settings.get("train_learning_rate", 0.08)
        self._eval_fraction = settings.get("eval_test_fraction", 0.2)
        self._eval_epochs = settings.get("eval_epochs", 250)
        self._eval_lr = settings.get("eval_learning_rate", 0.08)
        self._eval_seed = settings.get("eval_seed")
        self._action_threshold = settings.get("action_confidence_threshold", 0.55)
        self._async_actions = settings.get("async_actions", True)

        self._bus = event_bus or EventBus()
        self._router = router
        self._extractor = SensorFeatureExtractor()
        self._matcher = DTWMatcher(settings.get("dtw", {}))
        self._gesture_log = RecognitionLog()

        # State
        self._lock = threading.RLock()
        self._recording = False
        self._buffer: List[SensorSample] = []
        self._dataset = GestureDataset.empty()
        self._templates = TemplateStore.clear()
        self._model: Optional[SoftmaxModel] = None
        # Bumped whenever dataset or model are replaced; stale training results are dropped
        self._generation = 0

        # Background work
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gesture-worker")
        self._job_events = set()
        self._training = False
        self._status_task = PeriodicTask(
            self.tick, settings.get("status_interval_ms", 200), name="gesture-status"
        )
        self._disposed = False

        if self._router is not None:
            self._router.on_action(self._on_action_outcome)

    @classmethod
    def create(cls, config=None, event_bus: Optional[EventBus] = None, router=None) -> "GestureSession":
        """Build a session from a ``Config`` (or nested dict) of settings.

        When no router is given and ``actions.enabled`` is set, one is
        loaded from the configured actions file if it exists.
        """
        settings = {
            "smoothing_window": _lookup(config, "preprocessing.smoothing_window", 3),
            "dtw": _lookup(config, "dtw", {}) or {},
            "train_epochs": _lookup(config, "training.epochs", 250),
            "train_learning_rate": _lookup(config, "training.learning_rate", 0.08),
            "eval_test_fraction": _lookup(config, "evaluation.test_fraction", 0.2),
            "eval_epochs": _lookup(config, "evaluation.epochs", 250),
            "eval_learning_rate": _lookup(config, "evaluation.learning_rate", 0.08),
            "eval_seed": _lookup(config, "evaluation.seed"),
            "status_interval_ms": _lookup(config, "session.status_interval_ms", 200),
            "action_confidence_threshold": _lookup(config, "session.action_confidence_threshold", 0.55),
            "async_actions": _lookup(config, "session.async_actions", True),
        }

        if router is None and _lookup(config, "actions.enabled", False):
            from modules.control.action_executor import (
                LabelActionRouter, LoggingOpener, SystemOpener)
            actions_file = _lookup(config, "actions_file")
            if actions_file and os.path.exists(actions_file):
                opener_name = _lookup(config, "actions.opener", "logging")
                opener = SystemOpener() if opener_name == "system" else LoggingOpener()
                router = LabelActionRouter.from_yaml(actions_file, opener=opener)
            else:
                logger.warning("Actions enabled but no actions file found: %s", actions_file)

        session = cls(settings, event_bus=event_bus, router=router)
        logger.info("GestureSession created (window=%d, router=%s)",
                    settings["smoothing_window"], "yes" if router is not None else "no")
        return session

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def start_recording(self):
        """Discard the buffer and start accepting samples."""
        self._ensure_alive()
        with self._lock:
            self._buffer = []
            self._recording = True
        self._status_task.start()
        self._bus.emit(Events.RECORDING_STARTED)
        logger.debug("Recording started")

    def record_sample(self, sample: Union[SensorSample, dict]) -> bool:
        """Append one reading; ignored (returns False) while not recording.

        Raises:
            SequenceValidationError: the timestamp goes backwards.
        """
        if isinstance(sample, dict):
            sample = SensorSample.from_dict(sample)
        with self._lock:
            if not self._recording:
                return False
            if self._buffer and sample.t < self._buffer[-1].t:
                raise SequenceValidationError(
                    f"Samples must be ordered by timestamp ({sample.t} < {self._buffer[-1].t})"
                )
            self._buffer.append(sample)
        return True

    def stop_recording(self) -> Sequence[SensorSample]:
        """Stop capture and return the raw buffer (kept for save/classify)."""
        with self._lock:
            was_recording = self._recording
            self._recording = False
            buffered = tuple(self._buffer)
        self._status_task.cancel()
        if was_recording:
            self._bus.emit(Events.RECORDING_STOPPED, sample_count=len(buffered))
            logger.debug("Recording stopped with %d samples", len(buffered))
        return buffered

    def reset_buffer(self):
        with self._lock:
            self._buffer = []

    def tick(self):
        """Publish the current sample count (driven by the status task or the host)."""
        if self._disposed:
            return
        with self._lock:
            count = len(self._buffer)
            recording = self._recording
        self._bus.emit(Events.SAMPLE_COUNT, count=count, recording=recording)

    def _take_sequence(self) -> List[SensorSample]:
        """Stop capture and return the smoothed buffer."""
        raw = self.stop_recording()
        if not raw:
            raise SequenceValidationError("No gesture: record a gesture first")
        return moving_average(raw, self._smoothing_window)

    # ------------------------------------------------------------------
    # Dataset / templates
    # ------------------------------------------------------------------

    def save_example(self, label: str) -> DatasetEntry:
        """Store the recorded gesture under ``label``.

        The smoothed sequence becomes a feature-vector dataset entry and a
        DTW exemplar; both snapshots are swapped together or not at all.
        The new snapshots (including the per-label DTW stats) are built
        without holding the session lock. If another thread replaced either
        snapshot meanwhile, the build is redone on top of the newer state.
        """
        self._ensure_alive()
        trimmed = (label or "").strip()
        if not trimmed:
            self.stop_recording()
            raise ValidationError("Label required: type a label before saving")
        filtered = self._take_sequence()
        features = self._extractor.extract(filtered)

        while True:
            with self._lock:
                base_dataset, base_templates = self._dataset, self._templates
            dataset, entry = base_dataset.add_sample(trimmed, features)
            templates = base_templates.add(trimmed, filtered)
            with self._lock:
                if self._dataset is base_dataset and self._templates is base_templates:
                    self._dataset = dataset
                    self._templates = templates
                    if not self._recording:
                        self._buffer = []
                    break
            logger.debug("Snapshots changed while saving '%s', rebuilding", trimmed)

        logger.info("Saved example '%s' (%d samples, %.0fms); dataset size %d",
                    trimmed, entry.sample_count, entry.duration_ms, len(dataset))
        self._bus.emit(Events.EXAMPLE_SAVED, label=trimmed, entry_id=entry.id,
                       dataset_size=len(dataset))
        return entry

    def clear_dataset(self):
        """Remove all samples, templates and the trained model.

        Running training is cancelled and a result it still produces is
        discarded.
        """
        with self._lock:
            self._invalidate_jobs()
            self._dataset = GestureDataset.empty()
            self._templates = TemplateStore.clear()
            self._model = None
        logger.info("Dataset, templates and model cleared")
        self._bus.emit(Events.DATASET_CLEARED)

    def clear_templates(self):
        with self._lock:
            self._templates = TemplateStore.clear()
        self._bus.emit(Events.TEMPLATES_CLEARED)

    def clear_model(self):
        with self._lock:
            self._invalidate_jobs()
            self._model = None
        self._bus.emit(Events.MODEL_CLEARED)

    def _invalidate_jobs(self):
        """Cancel background jobs and orphan their results. Caller holds the lock."""
        self._generation += 1
        for event in self._job_events:
            event.set()

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    def classify_dtw(self) -> DTWMatch:
        """Match the recorded gesture against the template store.

        Runs on the calling thread; ``cancel_training()`` from another
        thread stops it between exemplar comparisons.
        """
        templates, filtered = self._take_dtw_query()
        cancel_event = self._register_job()
        try:
            return self._match_dtw(templates, filtered, cancel_event)
        finally:
            self._release_job(cancel_event)

    def classify_dtw_async(self) -> Future:
        """Match the recorded gesture on the background worker.

        The query and template snapshot are taken immediately, so recording
        can restart before the match finishes.

        Returns:
            Future resolving to the DTWMatch. ``cancel_training()`` (or
            clearing the dataset) makes it raise TrainingCancelledError.
        """
        templates, filtered = self._take_dtw_query()
        cancel_event = self._register_job()
        future = self._executor.submit(self._match_dtw, templates, filtered, cancel_event)
        future.add_done_callback(lambda _: self._release_job(cancel_event))
        return future

    def _take_dtw_query(self):
        self._ensure_alive()
        templates = self.templates
        if not len(templates):
            self.stop_recording()
            raise ValidationError(
                "No DTW templates: save at least one example per label first"
            )
        filtered = self._take_sequence()
        self.reset_buffer()
        return templates, filtered

    def _match_dtw(self, templates: TemplateStore, filtered, cancel_event) -> DTWMatch:
        start = time.perf_counter()
        try:
            match = self._matcher.classify(templates, filtered, cancel_event=cancel_event)
        except TrainingCancelledError:
            logger.info("DTW match cancelled")
            raise
        latency_ms = (time.perf_counter() - start) * 1000

        self._gesture_log.log_gesture(match.label, match.confidence, "dtw",
                                      accepted=match.accepted, latency_ms=latency_ms)
        if match.accepted:
            self._bus.emit(Events.GESTURE_RECOGNIZED, label=match.label, confidence=match.confidence,
                           method="dtw", result=match)
            self._act(match.label)
        else:
            self._bus.emit(Events.GESTURE_REJECTED, label=match.label, confidence=match.confidence,
                           method="dtw", result=match)
        return match

    def predict(self) -> PredictionResult:
        """Classify the recorded gesture with the trained softmax model.

        The mapped action fires when the top confidence reaches the
        configured threshold.
        """
        self._ensure_alive()
        model = self.model
        if model is None:
            self.stop_recording()
            raise ModelValidationError("Model missing: train or import a model first")
        filtered = self._take_sequence()
        start = time.perf_counter()
        features = self._extractor.extract(filtered)
        if list(features.names) != list(model.feature_names):
            raise ModelValidationError("Model feature layout does not match current extraction.")
        prediction = predict_from_model(model, features.values)
        latency_ms = (time.perf_counter() - start) * 1000
        self.reset_buffer()

        accepted = prediction.confidence >= self._action_threshold
        self._publish_prediction(prediction, "softmax", accepted, latency_ms)
        if accepted:
            self._act(prediction.label)
        return prediction

    def predict_baseline(self) -> PredictionResult:
        """Classify the recorded gesture with the nearest-neighbour baseline."""
        self._ensure_alive()
        dataset = self.dataset
        if not len(dataset):
            self.stop_recording()
            raise DatasetValidationError("Dataset empty: collect samples first")
        filtered = self._take_sequence()
        start = time.perf_counter()
        features = self._extractor.extract(filtered)
        dataset.ensure_feature_layout(features.names)
        prediction = predict_nearest_neighbor(dataset, features.values)
        latency_ms = (time.perf_counter() - start) * 1000
        self.reset_buffer()

        self._publish_prediction(prediction, "baseline", True, latency_ms)
        return prediction

    def _publish_prediction(self, prediction: PredictionResult, method: str,
                            accepted: bool, latency_ms: float):
        self._gesture_log.log_gesture(prediction.label, prediction.confidence, method,
                                      accepted=accepted, latency_ms=latency_ms)
        event = Events.GESTURE_RECOGNIZED if accepted else Events.GESTURE_REJECTED
        self._bus.emit(event, label=prediction.label, confidence=prediction.confidence,
                       method=method, result=prediction)

    def _act(self, label: str):
        if self._router is None:
            return
        self._router.dispatch(label, async_exec=self._async_actions)

    def _on_action_outcome(self, outcome):
        self._gesture_log.log_action(outcome.label, outcome.url, outcome.opened, outcome.reason)
        event = Events.ACTION_EXECUTED if outcome.opened else Events.ACTION_FAILED
        self._bus.emit(event, outcome=outcome)

    # ------------------------------------------------------------------
    # Training / evaluation (background worker)
    # ------------------------------------------------------------------

    def train_async(self, epochs: Optional[int] = None, learning_rate: Optional[float] = None,
                    on_epoch=None) -> Future:
        """Train a new model on the current dataset snapshot.

        Returns:
            Future resolving to the SoftmaxModel, which also replaces the
            session model. Failures (including cancellation) are published
            as TRAINING_FAILED and re-raised through the future. A run that
            finishes after the dataset or model was cleared or replaced is
            discarded with TrainingCancelledError.
        """
        self._ensure_alive()
        with self._lock:
            dataset = self._dataset
            generation = self._generation
        if not len(dataset):
            raise DatasetValidationError("Dataset empty: collect data before training")
        epochs = epochs or self._train_epochs
        learning_rate = learning_rate or self._train_lr

        cancel_event = self._register_job()
        future = self._executor.submit(self._train_job, dataset, epochs, learning_rate,
                                       cancel_event, on_epoch, generation)
        future.add_done_callback(lambda _: self._release_job(cancel_event))
        return future

    def _train_job(self, dataset, epochs, learning_rate, cancel_event, on_epoch,
                   generation) -> SoftmaxModel:
        self._training = True
        try:
            model = train_softmax_model(dataset, epochs=epochs, learning_rate=learning_rate,
                                        cancel_event=cancel_event, on_epoch=on_epoch)
            with self._lock:
                if generation != self._generation:
                    raise TrainingCancelledError(
                        "Training discarded: dataset or model changed while training"
                    )
                self._model = model
        except GestureMLError as e:
            logger.error("Training failed: %s", e)
            self._bus.emit(Events.TRAINING_FAILED, error=str(e))
            raise
        finally:
            self._training = False

        self._bus.emit(Events.MODEL_TRAINED, labels=list(model.labels),
                       final_loss=model.loss_history[-1], model=model)
        return model

    def cancel_training(self):
        """Ask every queued or running background job to stop.

        Training and evaluation stop at the next epoch, DTW matches at the
        next exemplar comparison.
        """
        with self._lock:
            for event in self._job_events:
                event.set()

    def evaluate(self, test_fraction: Optional[float] = None, epochs: Optional[int] = None,
                 learning_rate: Optional[float] = None, rng=None) -> Future:
        """Held-out evaluation on the current dataset; the session model is untouched.

        Without ``rng`` the split is seeded from ``evaluation.seed`` (random
        when that is null).

        Returns:
            Future resolving to ``(EvaluationResult, SoftmaxModel)``.
        """
        self._ensure_alive()
        dataset = self.dataset
        if not len(dataset):
            raise DatasetValidationError("Dataset empty: collect samples before evaluating accuracy")
        if rng is None:
            rng = np.random.default_rng(self._eval_seed)
        cancel_event = self._register_job()
        future = self._executor.submit(
            evaluate_softmax_on_dataset, dataset,
            test_fraction=test_fraction or self._eval_fraction,
            epochs=epochs or self._eval_epochs,
            learning_rate=learning_rate or self._eval_lr,
            rng=rng,
            cancel_event=cancel_event,
        )
        future.add_done_callback(lambda _: self._release_job(cancel_event))
        return future

    def _register_job(self) -> threading.Event:
        cancel_event = threading.Event()
        with self._lock:
            self._job_events.add(cancel_event)
        return cancel_event

    def _release_job(self, cancel_event: threading.Event):
        with self._lock:
            self._job_events.discard(cancel_event)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_dataset(self, source: Union[str, GestureDataset]) -> GestureDataset:
        dataset = source if isinstance(source, GestureDataset) else GestureDataset.load(source)
        with self._lock:
            self._invalidate_jobs()
            self._dataset = dataset
        return dataset

    def export_dataset(self, path: str):
        dataset = self.dataset
        if not len(dataset):
            raise DatasetValidationError("Nothing to export: collect some samples first")
        dataset.save(path)

    def import_model(self, source: Union[str, SoftmaxModel]) -> SoftmaxModel:
        model = source if isinstance(source, SoftmaxModel) else SoftmaxModel.load(source)
        with self._lock:
            self._invalidate_jobs()
            self._model = model
        self._bus.emit(Events.MODEL_TRAINED, labels=list(model.labels),
                       final_loss=model.loss_history[-1] if model.loss_history else None,
                       model=model)
        return model

    def export_model(self, path: str):
        model = self.model
        if model is None:
            raise ModelValidationError("No model: train or import a model first")
        model.save(path)

    def import_templates(self, source: Union[str, TemplateStore]) -> TemplateStore:
        store = source if isinstance(source, TemplateStore) else TemplateStore.load(source)
        with self._lock:
            self._templates = store
        return store

    def export_templates(self, path: str):
        self.templates.save(path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispose(self):
        """Stop background work and detach listeners. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True
        with self._lock:
            self._recording = False
            for event in self._job_events:
                event.set()
        self._status_task.cancel()
        self._executor.shutdown(wait=True)
        self._bus.disable()
        summary = self._gesture_log.summary()
        logger.info("GestureSession disposed (%d classifications, %d accepted, %d actions opened)",
                    summary["total"], summary["accepted"], summary["actions_opened"])

    def _ensure_alive(self):
        if self._disposed:
            raise GestureMLError("Session has been disposed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def dataset(self) -> GestureDataset:
        with self._lock:
            return self._dataset

    @property
    def templates(self) -> TemplateStore:
        with self._lock:
            return self._templates

    @property
    def model(self) -> Optional[SoftmaxModel]:
        with self._lock:
            return self._model

    @property
    def sample_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def training(self) -> bool:
        return self._training

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def router(self):
        return self._router

    @property
    def gesture_log(self) -> RecognitionLog:
        return self._gesture_log
