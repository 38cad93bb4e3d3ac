"""Greedy CTC decoding: frame normalization, run collapsing and token mapping."""

import logging
from itertools import groupby
from typing import Hashable, Iterable, Sequence

import numpy as np

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

BLANK_TOKEN = "<blank>"
SPACE_TOKEN = "<space>"
SUBWORD_MARKER = "▁"


def normalize_frames(features: np.ndarray, min_length: int, filler: float) -> np.ndarray:
    """
    Pad or truncate a feature sequence to exactly ``min_length`` frames.

    Args:
        features: Array of shape (frames, width)
        min_length: Number of frames the model expects
        filler: Value used for padded frames (log-floor silence)

    Returns:
        float32 array of shape (min_length, width)
    """
    features = np.asarray(features, dtype=np.float32)
    if features.ndim != 2:
        raise ConfigurationError(f"Expected 2-D features, got shape {features.shape}")

    frames, width = features.shape
    if frames >= min_length:
        return features[:min_length]

    padding = np.full((min_length - frames, width), filler, dtype=np.float32)
    return np.concatenate([features, padding], axis=0)


def group_reduce(indices: Iterable[Hashable]) -> list:
    """Collapse runs of consecutive equal values, e.g. AAABBCCCAAA -> ABCA."""
    return [key for key, _ in groupby(indices)]


def map_token(
    index: int,
    vocabulary: Sequence[str],
    blank_token: str = BLANK_TOKEN,
    space_token: str = SPACE_TOKEN,
    subword_marker: str = SUBWORD_MARKER,
) -> str:
    """Convert a class index to its display string."""
    index = int(index)
    if not 0 <= index < len(vocabulary):
        raise ConfigurationError(f"Class index {index} outside vocabulary of size {len(vocabulary)}")

    token = vocabulary[index]
    if token == blank_token:
        return ""
    if token == space_token:
        return " "
    return token.replace(subword_marker, " ")


def decode(indices: Iterable[int], vocabulary: Sequence[str], **markers: str) -> str:
    """Collapse repeated predictions, then map each surviving index to text."""
    return "".join(map_token(index, vocabulary, **markers) for index in group_reduce(indices))


class GreedyDecoder:
    """Decoder bound to a vocabulary and its reserved markers."""

    def __init__(
        self,
        vocabulary: Sequence[str],
        blank_token: str = BLANK_TOKEN,
        space_token: str = SPACE_TOKEN,
        subword_marker: str = SUBWORD_MARKER,
    ):
        self.vocabulary = list(vocabulary)
        self.blank_token = blank_token
        self.space_token = space_token
        self.subword_marker = subword_marker

    def __call__(self, indices: Iterable[int]) -> str:
        text = decode(
            indices,
            self.vocabulary,
            blank_token=self.blank_token,
            space_token=self.space_token,
            subword_marker=self.subword_marker,
        )
        logger.debug(f"Decoded: {text!r}")
        return text
