"""FastAPI control API for listenkit."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ..errors import ConfigurationError, ListenkitError

logger = logging.getLogger(__name__)

# Will be set by main.py
_recognizer_instance = None


class CommandResponse(BaseModel):
    """Response model for capture commands."""
    success: bool
    message: str
    data: Optional[dict] = None


class StatusResponse(BaseModel):
    """Response model for system status."""
    running: bool
    uptime_seconds: float
    model: str
    capture: dict
    pipeline_running: bool
    results: int


class TranscribeFileRequest(BaseModel):
    """Path of an audio file on the server."""
    path: str


def set_recognizer_instance(instance) -> None:
    """Set the Recognizer instance for API access."""
    global _recognizer_instance
    _recognizer_instance = instance


def _require_recognizer():
    if _recognizer_instance is None:
        raise HTTPException(status_code=503, detail="Recognizer not initialized")
    return _recognizer_instance


def _result_to_dict(result) -> dict:
    return {
        "transaction_id": result.transaction_id,
        "text": result.text,
        "source": result.source,
        "timestamp": result.timestamp.isoformat(),
        "duration_ms": result.duration_ms,
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="listenkit API",
        description="On-device speech recognition control API",
        version="0.1.0",
    )

    # CORS for local network access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.start_time = datetime.now()

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get current system status."""
        recognizer = _require_recognizer()
        status = recognizer.get_status()
        uptime = (datetime.now() - app.state.start_time).total_seconds()

        return StatusResponse(uptime_seconds=uptime, **status)

    @app.post("/api/record/start", response_model=CommandResponse)
    async def start_recording():
        """Start a bounded recording."""
        recognizer = _require_recognizer()
        started = await asyncio.to_thread(recognizer.start_recording)
        return CommandResponse(
            success=started,
            message="Recording started" if started else "Recording not started",
        )

    @app.post("/api/record/stop", response_model=CommandResponse)
    async def stop_recording():
        """Stop recording and wait for its transcription."""
        recognizer = _require_recognizer()
        transaction = await asyncio.to_thread(recognizer.stop_recording)
        if transaction is None:
            return CommandResponse(success=False, message="Not recording")

        try:
            result = await asyncio.wrap_future(transaction.future)
        except ListenkitError as e:
            logger.error(f"Recording transaction failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        return CommandResponse(success=True, message="Recording transcribed", data=_result_to_dict(result))

    @app.post("/api/listen/start", response_model=CommandResponse)
    async def start_listening():
        """Start continuous listening."""
        recognizer = _require_recognizer()
        started = await asyncio.to_thread(recognizer.start_listening)
        return CommandResponse(
            success=started,
            message="Listening started" if started else "Listening not started",
        )

    @app.post("/api/listen/stop", response_model=CommandResponse)
    async def stop_listening():
        """Stop continuous listening."""
        recognizer = _require_recognizer()
        await asyncio.to_thread(recognizer.stop_listening)
        return CommandResponse(success=True, message="Listening stopped")

    @app.post("/api/model/{name}", response_model=CommandResponse)
    async def select_model(name: str):
        """Select the acoustic model."""
        recognizer = _require_recognizer()
        try:
            await asyncio.to_thread(recognizer.select_model, name)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return CommandResponse(success=True, message=f"Model selected: {name}", data={"model": name})

    @app.get("/api/results/recent")
    async def get_recent_results(clear: bool = False):
        """Get recent transcription results."""
        recognizer = _require_recognizer()
        results = recognizer.pipeline.get_recent_results(clear=clear)
        return {"success": True, "data": [_result_to_dict(r) for r in results]}

    @app.post("/api/transcribe/file", response_model=CommandResponse)
    async def transcribe_file(request: TranscribeFileRequest):
        """Transcribe an audio file already present on the server."""
        recognizer = _require_recognizer()
        try:
            transaction = await asyncio.to_thread(recognizer.transcribe_file, request.path)
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        try:
            result = await asyncio.wrap_future(transaction.future)
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ListenkitError as e:
            logger.error(f"File transaction failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        return CommandResponse(success=True, message="File transcribed", data=_result_to_dict(result))

    return app
