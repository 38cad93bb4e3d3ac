"""Growable, rate-tagged sample buffer filled by a capture session."""

from typing import Optional

import numpy as np


class SampleBuffer:
    """Ordered float32 samples recorded at a known sample rate.

    Chunks are kept as a list so that ``append`` costs O(chunk) instead of
    re-copying everything captured so far. ``to_array`` concatenates on demand.
    """

    def __init__(self, sample_rate: int, initial: Optional[np.ndarray] = None):
        self.sample_rate = sample_rate
        self._chunks: list[np.ndarray] = []
        self._length = 0
        if initial is not None:
            self.append(initial)

    def append(self, chunk: np.ndarray) -> None:
        """Append a chunk of samples."""
        chunk = np.asarray(chunk, dtype=np.float32).reshape(-1)
        if chunk.size == 0:
            return
        self._chunks.append(chunk)
        self._length += chunk.size

    def reset(self, initial: Optional[np.ndarray] = None) -> None:
        """Drop all samples, optionally keeping ``initial`` as the new content."""
        self._chunks = []
        self._length = 0
        if initial is not None:
            self.append(initial)

    def to_array(self) -> np.ndarray:
        """Return all samples as a single contiguous array."""
        if not self._chunks:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(self._chunks)

    def snapshot(self) -> np.ndarray:
        """Return a read-only copy of the samples for hand-off to the decoder."""
        samples = self.to_array().copy()
        samples.setflags(write=False)
        return samples

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self._length / self.sample_rate

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def __len__(self) -> int:
        return self._length

    def __repr__(self) -> str:
        return f"SampleBuffer(samples={self._length}, sample_rate={self.sample_rate})"
