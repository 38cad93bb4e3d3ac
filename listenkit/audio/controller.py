"""Capture state machine: bounded recording and voice-activity-gated listening."""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from ..config import AudioConfig
from ..errors import AudioStreamError, ListenkitError
from .buffer import SampleBuffer
from .capture import AudioSource
from .vad import Activity, VoiceActivityGate

if TYPE_CHECKING:
    from ..recognition.pipeline import RecognitionPipeline, Transaction

logger = logging.getLogger(__name__)

SourceFactory = Callable[..., AudioSource]


class CaptureState(Enum):
    """Controller states. Idle is initial and reachable from every other state."""
    IDLE = "idle"
    RECORDING = "recording"
    LISTENING = "listening"


@dataclass
class CaptureSession:
    """One active capture: its mode, exclusive buffer and scoped audio source."""
    id: int
    mode: CaptureState
    buffer: SampleBuffer
    source: Optional[AudioSource] = None
    timer: Optional[threading.Timer] = None
    transaction_ids: list[int] = field(default_factory=list)


class CaptureController:
    """Owns the capture session and hands closed buffers to the recognition pipeline.

    Recording captures at the model rate and stops after ``record_duration``
    seconds or on ``stop_recording``, decoding exactly once. Listening captures
    at the device's native rate, flushes a transaction on every active->silent
    transition with enough audio, and never decodes on ``stop_listening``.
    """

    def __init__(
        self,
        config: AudioConfig,
        pipeline: "RecognitionPipeline",
        source_factory: SourceFactory = AudioSource,
    ):
        self.config = config
        self.pipeline = pipeline
        self.gate = VoiceActivityGate(config)
        self.chunk_size = config.chunk_size
        self.record_duration = config.record_duration

        self._source_factory = source_factory
        self._session: Optional[CaptureSession] = None
        self._session_ids = itertools.count(1)
        self._lock = threading.RLock()

        self._on_error: list[Callable[[Optional[int], Exception], None]] = []

    @property
    def state(self) -> CaptureState:
        session = self._session
        return session.mode if session is not None else CaptureState.IDLE

    @property
    def buffer(self) -> Optional[SampleBuffer]:
        session = self._session
        return session.buffer if session is not None else None

    def on_error(self, callback: Callable[[Optional[int], Exception], None]) -> None:
        """Register callback for capture failures (permission, stream interruption)."""
        self._on_error.append(callback)

    def _notify_error(self, error: Exception) -> None:
        for callback in self._on_error:
            try:
                callback(None, error)
            except Exception as e:
                logger.error(f"Error callback error: {e}")

    # ==================== Session lifecycle ====================

    def _open_session(self, mode: CaptureState, sample_rate: int) -> bool:
        session = CaptureSession(
            id=next(self._session_ids),
            mode=mode,
            buffer=SampleBuffer(sample_rate),
        )
        source = self._source_factory(
            self.config,
            sample_rate,
            on_chunk=lambda chunk: self._handle_chunk(session, chunk),
            on_error=lambda error: self._handle_source_error(session, error),
        )
        session.source = source

        with self._lock:
            self._session = session

        try:
            source.open()
        except Exception as e:
            logger.error(f"Cannot start {mode.value}: {e}")
            with self._lock:
                if self._session is session:
                    self._session = None
            source.close()
            error = e if isinstance(e, ListenkitError) else AudioStreamError(f"Cannot open audio source: {e}")
            self._notify_error(error)
            return False

        logger.info(f"Session {session.id} started: {mode.value} @ {sample_rate}Hz")
        return True

    def _close_session(self, expected: CaptureState) -> Optional[CaptureSession]:
        """Detach the current session if it is in ``expected`` mode and release its source.

        The source is closed outside the lock so the chunk consumer thread
        can finish its current chunk without deadlocking.
        """
        with self._lock:
            session = self._session
            if session is None or session.mode is not expected:
                return None
            self._session = None

        if session.timer is not None:
            session.timer.cancel()
        if session.source is not None:
            session.source.close()

        logger.info(f"Session {session.id} stopped: {expected.value}")
        return session

    def start_recording(self) -> bool:
        """Start a bounded recording, preempting an active listening session.

        Returns:
            True if a recording session was started
        """
        if self.state is CaptureState.RECORDING:
            logger.warning("Already recording")
            return False
        if self.state is CaptureState.LISTENING:
            logger.info("Recording preempts listening; discarding unflushed audio")
            self.stop_listening()

        if not self._open_session(CaptureState.RECORDING, self.config.sample_rate):
            return False

        session = self._session
        if session is not None and session.mode is CaptureState.RECORDING:
            timer = threading.Timer(self.record_duration, self._on_record_timeout, args=(session,))
            timer.daemon = True
            session.timer = timer
            timer.start()
        return True

    def _on_record_timeout(self, session: CaptureSession) -> None:
        if self._session is not session:
            return
        logger.info(f"Recording reached {self.record_duration}s limit")
        self.stop_recording()

    def stop_recording(self) -> Optional["Transaction"]:
        """Stop recording and submit one transaction over the recorded audio.

        Returns:
            The submitted transaction, or None if not recording
        """
        session = self._close_session(CaptureState.RECORDING)
        if session is None:
            return None
        return self._submit(session, "record")

    def start_listening(self) -> bool:
        """Start gated listening, preempting (and decoding) an active recording.

        Returns:
            True if a listening session was started
        """
        if self.state is CaptureState.LISTENING:
            logger.warning("Already listening")
            return False
        if self.state is CaptureState.RECORDING:
            logger.info("Listening preempts recording; decoding recorded audio")
            self.stop_recording()

        return self._open_session(CaptureState.LISTENING, self.config.listen_sample_rate)

    def stop_listening(self) -> None:
        """Stop listening. Audio not yet flushed is discarded."""
        session = self._close_session(CaptureState.LISTENING)
        if session is not None and len(session.buffer) > 0:
            logger.debug(f"Discarded {len(session.buffer)} unflushed samples")

    def stop(self) -> None:
        """Stop whichever session is active."""
        if self.state is CaptureState.RECORDING:
            self.stop_recording()
        elif self.state is CaptureState.LISTENING:
            self.stop_listening()

    # ==================== Chunk handling ====================

    def _handle_chunk(self, session: CaptureSession, chunk: np.ndarray) -> None:
        """Handle one incoming chunk; chunks of a stale session are ignored."""
        with self._lock:
            if self._session is not session:
                return
            if session.mode is CaptureState.RECORDING:
                session.buffer.append(chunk)
            else:
                self._handle_listen_chunk(session, chunk)

    def _handle_listen_chunk(self, session: CaptureSession, chunk: np.ndarray) -> None:
        buffer = session.buffer
        if self.gate.classify(chunk) is Activity.ACTIVE:
            buffer.append(chunk)
        elif len(buffer) > self.chunk_size:
            # Keep the trailing silence, then flush
            buffer.append(chunk)
            self._submit(session, "listen")
            buffer.reset()
        else:
            # Hold one frame of lead-in for the next onset
            buffer.reset(chunk)

    def _submit(self, session: CaptureSession, source: str) -> "Transaction":
        transaction = self.pipeline.submit(session.buffer.snapshot(), session.buffer.sample_rate, source)
        session.transaction_ids.append(transaction.id)
        logger.debug(f"Session {session.id} submitted transaction {transaction.id}")
        return transaction

    def _handle_source_error(self, session: CaptureSession, error: Exception) -> None:
        """Treat a stream interruption as an implicit stop of its session."""
        if self._session is not session:
            return
        logger.error(f"Session {session.id} interrupted: {error}")
        if session.mode is CaptureState.RECORDING:
            self.stop_recording()
        else:
            self.stop_listening()
        if not isinstance(error, AudioStreamError):
            error = AudioStreamError(str(error))
        self._notify_error(error)

    def get_status(self) -> dict:
        session = self._session
        return {
            "state": self.state.value,
            "session_id": session.id if session is not None else None,
            "buffered_samples": len(session.buffer) if session is not None else 0,
            "pending_transactions": self.pipeline.pending_ids(),
        }
