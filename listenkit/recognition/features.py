"""Log-mel feature extraction."""

import logging

import numpy as np
import torch
import torchaudio

logger = logging.getLogger(__name__)

# log(1e-6) ~= -13.8, the value silent frames take and the filler used for padding
LOG_FLOOR = 1e-6


def pad_waveform(
    samples: np.ndarray,
    min_length: int,
    fft_size: int,
    hop_length: int,
    lead: int = 256,
) -> np.ndarray:
    """
    Zero-pad raw samples so the extractor yields at least ``min_length`` frames.

    ``lead`` zeros are placed before the audio; the total length is at least
    ``fft_size + (min_length - 1) * hop_length`` samples, the shortest input
    that fills ``min_length`` uncentered windows.
    """
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    total = max(fft_size + (min_length - 1) * hop_length, len(samples) + lead)
    padded = np.zeros(total, dtype=np.float32)
    padded[lead:lead + len(samples)] = samples
    return padded


class LogMelSpectrogram:
    """Log-mel spectrogram (HTK mel scale, Hann window, no centering)."""

    def __init__(self, sample_rate: int = 16000, fft_size: int = 512, hop_length: int = 256, n_mels: int = 80):
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.hop_length = hop_length
        self.n_mels = n_mels
        self._transform = torchaudio.transforms.MelSpectrogram(
            sample_rate=sample_rate,
            n_fft=fft_size,
            hop_length=hop_length,
            n_mels=n_mels,
            center=False,
            power=2.0,
            mel_scale="htk",
        )

    @property
    def feature_width(self) -> int:
        return self.n_mels

    def num_frames(self, num_samples: int) -> int:
        if num_samples < self.fft_size:
            return 0
        return 1 + (num_samples - self.fft_size) // self.hop_length

    def __call__(self, samples: np.ndarray) -> np.ndarray:
        """
        Compute features for a waveform.

        Args:
            samples: 1-D float32 waveform at ``sample_rate``

        Returns:
            Array of shape (frames, n_mels)
        """
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        frames = self.num_frames(len(samples))
        if frames == 0:
            return np.zeros((0, self.n_mels), dtype=np.float32)

        with torch.no_grad():
            mel = self._transform(torch.from_numpy(np.ascontiguousarray(samples)))
            features = torch.log(torch.clamp(mel, min=LOG_FLOOR)).transpose(0, 1)

        logger.debug(f"Extracted {features.shape[0]} frames from {len(samples)} samples")
        return features.numpy().astype(np.float32)
