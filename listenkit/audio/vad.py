"""Energy-based voice activity gate."""

import logging
from enum import Enum

import numpy as np

from ..config import AudioConfig

logger = logging.getLogger(__name__)


class Activity(Enum):
    """Classification of a single audio chunk."""
    ACTIVE = "active"
    SILENT = "silent"


class VoiceActivityGate:
    """Classifies chunks as active or silent against a loudness threshold.

    The loudness metric is the mean absolute sample magnitude of the chunk.
    Every chunk is classified on its own; there is no smoothing or hysteresis.
    """

    def __init__(self, config: AudioConfig):
        self.config = config
        self.threshold = config.vad_threshold

    @staticmethod
    def level(chunk: np.ndarray) -> float:
        """
        Compute the loudness of a chunk.

        Args:
            chunk: Audio samples as float32 numpy array

        Returns:
            Mean absolute magnitude, 0.0 for an empty chunk
        """
        if chunk.size == 0:
            return 0.0
        return float(np.mean(np.abs(chunk)))

    def classify(self, chunk: np.ndarray) -> Activity:
        """Classify a chunk as active or silent."""
        level = self.level(chunk)
        activity = Activity.ACTIVE if level > self.threshold else Activity.SILENT
        logger.debug(f"Chunk level {level:.5f} -> {activity.value}")
        return activity

    def is_active(self, chunk: np.ndarray) -> bool:
        return self.classify(chunk) is Activity.ACTIVE
