"""Scoped microphone source delivering fixed-size chunks through a bounded queue."""

import logging
import queue
import threading
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from ..config import AudioConfig
from ..errors import AudioStreamError, ConfigurationError, PermissionDenied

logger = logging.getLogger(__name__)


class AudioSource:
    """Microphone input stream owned by a single capture session.

    The sounddevice callback only copies the chunk into a bounded queue; a
    consumer thread drains the queue and hands chunks to ``on_chunk``. If the
    stream ends without ``close`` having been called, ``on_error`` receives an
    ``AudioStreamError``.
    """

    def __init__(
        self,
        config: AudioConfig,
        sample_rate: int,
        on_chunk: Callable[[np.ndarray], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.config = config
        self.sample_rate = sample_rate
        self.channels = config.channels
        self.chunk_size = config.chunk_size

        self._on_chunk = on_chunk
        self._on_error = on_error
        self._audio_queue: queue.Queue[np.ndarray] = queue.Queue(maxsize=config.queue_size)
        self._stream: Optional[sd.InputStream] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self.dropped_chunks = 0

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: dict,
        status: sd.CallbackFlags,
    ) -> None:
        """Callback for sounddevice stream."""
        if status:
            logger.warning(f"Audio callback status: {status}")

        # First channel only, as float32
        chunk = indata[:, 0].copy() if indata.ndim > 1 else indata.copy()
        chunk = chunk.astype(np.float32, copy=False)

        try:
            self._audio_queue.put_nowait(chunk)
        except queue.Full:
            self.dropped_chunks += 1
            logger.warning(f"Chunk queue full, dropped chunk ({self.dropped_chunks} total)")

    def _finished_callback(self) -> None:
        """Called by sounddevice once the stream has become inactive."""
        if not self._running:
            return
        logger.error("Audio stream ended unexpectedly")
        self._running = False
        if self._on_error is not None:
            # Not on the PortAudio thread: the handler closes this stream
            threading.Thread(
                target=self._on_error,
                args=(AudioStreamError("Audio input stream was interrupted"),),
                daemon=True,
            ).start()

    def _process_loop(self) -> None:
        """Deliver queued chunks to the chunk handler."""
        while self._running:
            try:
                chunk = self._audio_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._on_chunk(chunk)
            except Exception as e:
                logger.error(f"Chunk handler error: {e}", exc_info=True)

    def _resolve_device(self):
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def open(self) -> None:
        """Open the input stream and start delivering chunks.

        Raises:
            PermissionDenied: if the device cannot be opened
            ConfigurationError: if the device name or stream settings are invalid
        """
        if self._running:
            logger.warning("Audio source already open")
            return

        logger.info(f"Opening audio source: {self.sample_rate}Hz, {self.channels}ch, {self.chunk_size} samples/chunk")

        try:
            self._stream = sd.InputStream(
                device=self._resolve_device(),
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.chunk_size,
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
            )
            self._running = True
            self._stream.start()
        except sd.PortAudioError as e:
            self._running = False
            self._release_stream()
            raise PermissionDenied(f"Cannot open microphone: {e}") from e
        except ValueError as e:
            # Unknown device name or unsupported stream parameters
            self._running = False
            self._release_stream()
            raise ConfigurationError(f"Invalid audio device settings: {e}") from e

        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()

        logger.info("Audio source opened")

    def close(self) -> None:
        """Stop the stream, release the device and discard undelivered chunks."""
        was_running = self._running
        self._running = False
        self._release_stream()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None

        while not self._audio_queue.empty():
            try:
                self._audio_queue.get_nowait()
            except queue.Empty:
                break

        if was_running:
            logger.info("Audio source closed")

    def _release_stream(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
        except sd.PortAudioError as e:
            logger.warning(f"Error stopping audio stream: {e}")
        finally:
            stream.close()

    def __enter__(self) -> "AudioSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def is_running(self) -> bool:
        """Check if the source is delivering chunks."""
        return self._running

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices
