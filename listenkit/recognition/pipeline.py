"""Transaction worker running resample -> extract -> infer -> decode off the capture thread."""

import itertools
import logging
import queue
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np

from ..audio.resample import resample
from ..config import Config
from ..errors import ConfigurationError
from .decoder import GreedyDecoder, normalize_frames
from .features import LogMelSpectrogram, pad_waveform
from .model import CTCModel, ModelSpec, get_model_spec, load_vocabulary

logger = logging.getLogger(__name__)

InferFn = Callable[[np.ndarray], np.ndarray]
ExtractFn = Callable[[np.ndarray], np.ndarray]
ErrorCallback = Callable[[Optional[int], Exception], None]


@dataclass(frozen=True)
class TranscriptionResult:
    """Text produced by one completed transaction."""
    transaction_id: int
    text: str
    source: str
    timestamp: datetime
    duration_ms: int


@dataclass
class Transaction:
    """A closed buffer queued for recognition."""
    id: int
    samples: np.ndarray
    sample_rate: int
    source: str
    created_at: datetime = field(default_factory=datetime.now)
    future: Future = field(default_factory=Future)

    @property
    def duration_ms(self) -> int:
        return int(len(self.samples) * 1000 / self.sample_rate)


class RecognitionPipeline:
    """Runs recognition transactions on a worker thread.

    The model and vocabulary are loaded lazily by the first transaction that
    needs them. A load failure rejects that transaction; the next one tries again.
    """

    def __init__(
        self,
        config: Config,
        extractor: Optional[ExtractFn] = None,
        model: Optional[InferFn] = None,
        vocabulary: Optional[Sequence[str]] = None,
        max_recent_results: int = 100,
    ):
        self.config = config
        self.target_rate = config.audio.sample_rate
        self.spec: ModelSpec = get_model_spec(config.model.name)

        if extractor is None:
            extractor = LogMelSpectrogram(
                sample_rate=self.target_rate,
                fft_size=config.model.fft_size,
                hop_length=config.model.hop_length,
                n_mels=config.model.n_mels,
            )
        self._extractor = extractor
        self._model = model
        self._vocabulary = list(vocabulary) if vocabulary is not None else None
        self._decoder: Optional[GreedyDecoder] = None
        self._load_lock = threading.Lock()

        self._queue: queue.Queue[Transaction] = queue.Queue()
        self._pending: dict[int, Transaction] = {}
        self._ids = itertools.count(1)
        self._running = False
        self._thread: Optional[threading.Thread] = None

        self._on_result: list[Callable[[TranscriptionResult], None]] = []
        self._on_error: list[ErrorCallback] = []

        self._recent_results: deque[TranscriptionResult] = deque(maxlen=max_recent_results)
        self._lock = threading.Lock()

    # ==================== Model selection ====================

    @property
    def model_name(self) -> str:
        return self.spec.name

    def select_model(self, name: str) -> None:
        """Switch to another registered model; it is loaded by the next transaction.

        Raises:
            ConfigurationError: if the name is not registered
        """
        spec = get_model_spec(name)
        with self._load_lock:
            self.spec = spec
            self.config.model.name = name
            self._model = None
            self._vocabulary = None
            self._decoder = None
        logger.info(f"Selected model: {name}")

    def _ensure_loaded(self) -> tuple[ModelSpec, InferFn, GreedyDecoder]:
        with self._load_lock:
            spec = self.spec
            model_config = self.config.model
            if self._vocabulary is None:
                self._vocabulary = load_vocabulary(model_config.models_dir, spec.name, model_config.vocabulary_file)
            if self._model is None:
                model = CTCModel(
                    Path(model_config.models_dir) / spec.name / model_config.model_file,
                    feature_width=spec.feature_width,
                    device=model_config.device,
                )
                model.load()
                self._model = model
            if self._decoder is None:
                self._decoder = GreedyDecoder(
                    self._vocabulary,
                    blank_token=model_config.blank_token,
                    space_token=model_config.space_token,
                    subword_marker=model_config.subword_marker,
                )
            return spec, self._model, self._decoder

    # ==================== Transactions ====================

    def submit(self, samples: np.ndarray, sample_rate: int, source: str) -> Transaction:
        """Queue a closed buffer for recognition and return its transaction."""
        transaction = Transaction(
            id=next(self._ids),
            samples=np.asarray(samples, dtype=np.float32),
            sample_rate=sample_rate,
            source=source,
        )
        with self._lock:
            self._pending[transaction.id] = transaction
        self._queue.put(transaction)
        logger.debug(
            f"Queued transaction {transaction.id} ({source}, {len(transaction.samples)} samples @ {sample_rate}Hz)"
        )
        return transaction

    def cancel(self, transaction_id: int) -> bool:
        """Cancel a transaction that has not started running yet."""
        with self._lock:
            transaction = self._pending.get(transaction_id)
        if transaction is None:
            return False
        cancelled = transaction.future.cancel()
        if cancelled:
            logger.info(f"Cancelled transaction {transaction_id}")
        return cancelled

    def pending_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._pending)

    def _recognize(self, transaction: Transaction) -> TranscriptionResult:
        """Run all stages for one transaction, strictly in order."""
        spec, infer, decoder = self._ensure_loaded()

        samples = transaction.samples
        if transaction.sample_rate != self.target_rate:
            samples = resample(samples, transaction.sample_rate, self.target_rate)

        waveform = pad_waveform(
            samples,
            spec.min_length,
            self.config.model.fft_size,
            self.config.model.hop_length,
            self.config.model.lead_padding,
        )
        features = np.asarray(self._extractor(waveform), dtype=np.float32)
        if features.ndim != 2 or features.shape[1] != spec.feature_width:
            raise ConfigurationError(
                f"Extractor produced shape {features.shape}, model '{spec.name}' expects width {spec.feature_width}"
            )

        features = normalize_frames(features, spec.min_length, spec.filler)
        indices = infer(features)
        text = decoder(indices)

        return TranscriptionResult(
            transaction_id=transaction.id,
            text=text,
            source=transaction.source,
            timestamp=transaction.created_at,
            duration_ms=transaction.duration_ms,
        )

    def _process(self, transaction: Transaction) -> None:
        """Resolve one transaction's future and notify subscribers."""
        try:
            if not transaction.future.set_running_or_notify_cancel():
                logger.debug(f"Transaction {transaction.id} was cancelled before running")
                return

            try:
                result = self._recognize(transaction)
            except Exception as e:
                logger.error(f"Transaction {transaction.id} failed: {e}")
                transaction.future.set_exception(e)
                self._notify_error(transaction.id, e)
                return
        finally:
            with self._lock:
                self._pending.pop(transaction.id, None)

        logger.info(f"Transaction {transaction.id} ({transaction.source}): '{result.text[:50]}'")

        with self._lock:
            self._recent_results.append(result)

        transaction.future.set_result(result)
        for callback in self._on_result:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Result callback error: {e}")

    def _notify_error(self, transaction_id: Optional[int], error: Exception) -> None:
        for callback in self._on_error:
            try:
                callback(transaction_id, error)
            except Exception as e:
                logger.error(f"Error callback error: {e}")

    def _worker_loop(self) -> None:
        """Process transactions from queue."""
        while self._running:
            try:
                transaction = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._process(transaction)

    # ==================== Subscriptions ====================

    def on_result(self, callback: Callable[[TranscriptionResult], None]) -> None:
        """Register callback for completed transactions."""
        self._on_result.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register callback for failed transactions."""
        self._on_error.append(callback)

    def get_recent_results(self, clear: bool = False) -> list[TranscriptionResult]:
        """Get recent results, optionally clearing the buffer."""
        with self._lock:
            results = list(self._recent_results)
            if clear:
                self._recent_results.clear()
        return results

    def clear_results(self) -> None:
        """Clear the result buffer."""
        with self._lock:
            self._recent_results.clear()

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start the worker thread."""
        if self._running:
            logger.warning("Recognition pipeline already running")
            return

        self._running = True
        self._thread = threading.Thread(target=self._worker_loop, daemon=True)
        self._thread.start()

        logger.info(f"Recognition pipeline started (model: {self.spec.name})")

    def stop(self) -> None:
        """Stop the worker thread and cancel transactions that never ran."""
        if not self._running:
            return

        logger.info("Stopping recognition pipeline")
        self._running = False

        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

        while not self._queue.empty():
            try:
                transaction = self._queue.get_nowait()
            except queue.Empty:
                break
            transaction.future.cancel()
            with self._lock:
                self._pending.pop(transaction.id, None)

        logger.info("Recognition pipeline stopped")

    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._running
