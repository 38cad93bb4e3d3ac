"""Main orchestrator for listenkit - on-device speech recognition."""

import argparse
import logging
import signal
import sys
import threading
import time
from concurrent.futures import CancelledError, TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf
import uvicorn

from .audio.capture import AudioSource
from .audio.controller import CaptureController, CaptureState
from .config import Config, load_config
from .errors import ListenkitError
from .recognition.model import get_model_spec
from .recognition.pipeline import RecognitionPipeline, Transaction, TranscriptionResult
from .web.api import create_app, set_recognizer_instance

logger = logging.getLogger(__name__)


class Recognizer:
    """Ties the capture controller to the recognition pipeline."""

    def __init__(
        self,
        config: Config,
        pipeline: Optional[RecognitionPipeline] = None,
        source_factory=AudioSource,
    ):
        self.config = config
        self._running = False

        logger.info("Initializing recognition pipeline...")
        self.pipeline = pipeline or RecognitionPipeline(config)
        self.controller = CaptureController(config.audio, self.pipeline, source_factory=source_factory)

        self.pipeline.on_result(self._on_result)
        self.pipeline.on_error(self._on_error)
        self.controller.on_error(self._on_error)

        self._web_thread: Optional[threading.Thread] = None
        self._web_server: Optional[uvicorn.Server] = None

    def _on_result(self, result: TranscriptionResult) -> None:
        logger.info(f"[{result.transaction_id}] {result.text}")

    def _on_error(self, transaction_id: Optional[int], error: Exception) -> None:
        if transaction_id is None:
            logger.error(f"Capture failed: {error}")
        else:
            logger.error(f"Transaction {transaction_id} failed: {error}")

    # ==================== Subscriptions ====================

    def on_result(self, callback: Callable[[TranscriptionResult], None]) -> None:
        """Register callback for recognized text."""
        self.pipeline.on_result(callback)

    def on_error(self, callback: Callable[[Optional[int], Exception], None]) -> None:
        """Register callback for capture and transaction failures."""
        self.pipeline.on_error(callback)
        self.controller.on_error(callback)

    # ==================== Operations ====================

    @property
    def model_name(self) -> str:
        return self.pipeline.model_name

    def select_model(self, name: str) -> None:
        """Select the acoustic model; raises ConfigurationError for unknown names."""
        get_model_spec(name)
        if self.controller.state is not CaptureState.IDLE:
            logger.info("Stopping active capture before switching model")
            self.controller.stop()
        self.pipeline.select_model(name)

    def start_recording(self) -> bool:
        return self.controller.start_recording()

    def stop_recording(self) -> Optional[Transaction]:
        return self.controller.stop_recording()

    def start_listening(self) -> bool:
        return self.controller.start_listening()

    def stop_listening(self) -> None:
        self.controller.stop_listening()

    def transcribe_samples(self, samples: np.ndarray, sample_rate: int) -> Transaction:
        """Queue an in-memory waveform for recognition."""
        return self.pipeline.submit(samples, sample_rate, "samples")

    def transcribe_file(self, path: str | Path) -> Transaction:
        """Queue an audio file for recognition (first channel only)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Audio file not found: {path}")

        audio, sample_rate = sf.read(str(path), dtype="float32")
        if audio.ndim > 1:
            audio = audio[:, 0]

        logger.info(f"Loaded {path.name}: {len(audio)} samples @ {sample_rate}Hz")
        return self.pipeline.submit(audio, sample_rate, "file")

    # ==================== Web server ====================

    def _start_web_server(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        """Start the web server in a background thread."""
        logger.info(f"Starting web server on {host}:{port}...")

        set_recognizer_instance(self)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)

        self._web_thread = threading.Thread(target=self._web_server.run, daemon=True)
        self._web_thread.start()

        logger.info(f"Web server started at http://{host}:{port}")

    def _stop_web_server(self) -> None:
        """Stop the web server."""
        if self._web_server is not None:
            logger.info("Stopping web server...")
            self._web_server.should_exit = True
            if self._web_thread is not None:
                self._web_thread.join(timeout=5.0)
            self._web_server = None
            self._web_thread = None

    # ==================== Lifecycle ====================

    def start(self, enable_web: bool = False, web_port: int = 8080) -> None:
        """Start the recognition worker and, optionally, the web server."""
        if self._running:
            logger.warning("Recognizer already running")
            return

        logger.info("Starting recognizer...")
        self._running = True
        self.config.ensure_directories()
        self.pipeline.start()

        if enable_web:
            self._start_web_server(port=web_port)

        logger.info("Recognizer started")

    def stop(self) -> None:
        """Stop capture, the worker and the web server."""
        if not self._running:
            return

        logger.info("Stopping recognizer...")
        self._running = False

        self._stop_web_server()
        self.controller.stop()
        self.pipeline.stop()

        logger.info("Recognizer stopped")

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        """Get current status of all components."""
        return {
            "running": self._running,
            "model": self.model_name,
            "capture": self.controller.get_status(),
            "pipeline_running": self.pipeline.is_running(),
            "results": len(self.pipeline.get_recent_results()),
        }


def _wait_for(transaction: Optional[Transaction], timeout: float = 60.0) -> None:
    """Print the text of a transaction once it completes."""
    if transaction is None:
        return
    try:
        result = transaction.future.result(timeout=timeout)
    except FutureTimeoutError:
        print(f"Recognition timed out after {timeout:.0f}s", file=sys.stderr)
        return
    except CancelledError:
        print("Recognition was cancelled", file=sys.stderr)
        return
    except Exception as e:
        print(f"Recognition failed: {e}", file=sys.stderr)
        return
    print(result.text)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="listenkit - on-device speech recognition")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help="Acoustic model name (overrides config)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--file",
        help="Transcribe an audio file and exit",
    )
    mode.add_argument(
        "--record",
        action="store_true",
        help="Record once for the configured duration and transcribe",
    )
    mode.add_argument(
        "--listen",
        action="store_true",
        help="Listen continuously and print each utterance",
    )
    mode.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio devices",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP control API",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=8080,
        help="Web server port (default: 8080)",
    )
    args = parser.parse_args()

    if args.list_audio:
        print("Available audio devices:")
        for dev in AudioSource.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch, {dev['sample_rate']:.0f}Hz)")
        return

    config = load_config(args.config)
    if args.model:
        config.model.name = args.model
    config.setup_logging()

    try:
        app = Recognizer(config)
    except ListenkitError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.start(enable_web=args.serve, web_port=args.port)

    try:
        if args.file:
            _wait_for(app.transcribe_file(args.file))
        elif args.record:
            done = threading.Event()

            def print_recorded(result: TranscriptionResult) -> None:
                if result.source == "record":
                    print(result.text)
                    done.set()

            app.on_result(print_recorded)
            app.on_error(lambda transaction_id, error: done.set())
            # The recording timer submits the transaction
            if app.start_recording():
                done.wait(timeout=config.audio.record_duration + 60.0)
        elif args.listen or args.serve:
            if args.listen:
                app.on_result(lambda result: print(result.text, flush=True))
                app.start_listening()
            while True:
                time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
