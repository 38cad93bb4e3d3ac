"""Recognition components: feature extraction, model inference and CTC decoding."""

from .decoder import GreedyDecoder, decode, group_reduce, map_token, normalize_frames
from .features import LogMelSpectrogram, pad_waveform
from .model import MODEL_SPECS, CTCModel, ModelSpec, get_model_spec, load_vocabulary
from .pipeline import RecognitionPipeline, Transaction, TranscriptionResult

__all__ = [
    "CTCModel",
    "GreedyDecoder",
    "LogMelSpectrogram",
    "MODEL_SPECS",
    "ModelSpec",
    "RecognitionPipeline",
    "Transaction",
    "TranscriptionResult",
    "decode",
    "get_model_spec",
    "group_reduce",
    "load_vocabulary",
    "map_token",
    "normalize_frames",
    "pad_waveform",
]
