"""Audio capture components: buffering, voice activity gating, resampling and the capture state machine."""

from .buffer import SampleBuffer
from .capture import AudioSource
from .controller import CaptureController, CaptureState
from .resample import resample
from .vad import Activity, VoiceActivityGate

__all__ = [
    "Activity",
    "AudioSource",
    "CaptureController",
    "CaptureState",
    "SampleBuffer",
    "VoiceActivityGate",
    "resample",
]
