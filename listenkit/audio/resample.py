"""Sample-rate conversion for captured audio."""

import logging

import numpy as np

from .buffer import SampleBuffer

logger = logging.getLogger(__name__)


def resampled_length(length: int, source_rate: int, target_rate: int) -> int:
    """Number of output samples that keeps the real-world duration of ``length`` samples."""
    return int(round(length * target_rate / source_rate))


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """
    Convert samples from ``source_rate`` to ``target_rate`` with linear interpolation.

    Output sample ``i`` is taken at source position ``i * source_rate / target_rate``,
    so relative timing is preserved and the duration differs from the input's by
    less than one target sample period.

    Args:
        samples: 1-D audio samples
        source_rate: Rate the samples were captured at (Hz)
        target_rate: Desired rate (Hz)

    Returns:
        Resampled float32 array
    """
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError(f"Sample rates must be positive: {source_rate} -> {target_rate}")

    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    if source_rate == target_rate:
        return samples.copy()

    out_length = resampled_length(len(samples), source_rate, target_rate)
    if out_length == 0:
        return np.zeros(0, dtype=np.float32)

    positions = np.arange(out_length, dtype=np.float64) * (source_rate / target_rate)
    positions = np.minimum(positions, len(samples) - 1)
    resampled = np.interp(positions, np.arange(len(samples)), samples)

    logger.debug(f"Resampled {len(samples)} samples @ {source_rate}Hz -> {out_length} @ {target_rate}Hz")
    return resampled.astype(np.float32)


def resample_buffer(buffer: SampleBuffer, target_rate: int) -> SampleBuffer:
    """Resample a closed buffer into a new buffer tagged with ``target_rate``."""
    return SampleBuffer(target_rate, resample(buffer.to_array(), buffer.sample_rate, target_rate))
