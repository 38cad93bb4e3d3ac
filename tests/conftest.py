"""Pytest configuration and shared fixtures."""

import json
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
audio:
  device: "default"
  sample_rate: 16000
  listen_sample_rate: 44100
  chunk_size: 1024
  record_duration: 2.5
  vad_threshold: 0.02

model:
  name: "monica"
  models_dir: "{models_dir}"

logging:
  level: "DEBUG"
  file: null
""".format(models_dir=str(temp_dir / "models"))

    config_path.write_text(config_content)
    return config_path


# ==================== Audio Fixtures ====================

CHUNK_SIZE = 1024


@pytest.fixture
def chunk_size():
    return CHUNK_SIZE


@pytest.fixture
def active_chunk():
    """A loud chunk, well above the default VAD threshold."""
    rng = np.random.default_rng(0)
    return (rng.standard_normal(CHUNK_SIZE) * 0.3).astype(np.float32)


@pytest.fixture
def silent_chunk():
    """A near-silent chunk, below the default VAD threshold."""
    return np.full(CHUNK_SIZE, 0.001, dtype=np.float32)


@pytest.fixture
def mock_audio_config():
    """Create a mock audio config."""
    from listenkit.config import AudioConfig
    return AudioConfig(
        device="default",
        sample_rate=16000,
        listen_sample_rate=44100,
        channels=1,
        chunk_size=CHUNK_SIZE,
        record_duration=4.0,
        vad_threshold=0.01,
        queue_size=8,
    )


# ==================== Model Fixtures ====================

@pytest.fixture
def vocabulary():
    """Token table with reserved blank and word-boundary entries."""
    return ["<blank>", "<space>", "l", "▁he", "llo", "hi", "▁world", "there"]


@pytest.fixture
def models_dir(temp_dir, vocabulary):
    """Models directory holding a token list for the 'sample' model."""
    model_dir = temp_dir / "models" / "sample"
    model_dir.mkdir(parents=True)
    (model_dir / "token_list.json").write_text(json.dumps({"token_list": vocabulary}))
    return temp_dir / "models"


@pytest.fixture
def mock_config(models_dir, mock_audio_config):
    """Full config pointing at the temporary models directory."""
    from listenkit.config import Config, LoggingConfig, ModelConfig
    return Config(
        audio=mock_audio_config,
        model=ModelConfig(name="sample", models_dir=str(models_dir)),
        logging=LoggingConfig(level="DEBUG", file=None),
    )


@pytest.fixture
def fake_extractor():
    """Feature extractor returning 100 frames of width 80."""
    return MagicMock(return_value=np.zeros((100, 80), dtype=np.float32))


@pytest.fixture
def fake_infer():
    """Inference collaborator returning a fixed index sequence."""
    return MagicMock(return_value=np.array([0, 0, 5, 5, 5, 1, 7], dtype=np.int64))


@pytest.fixture
def mock_torch_module():
    """TorchScript module returning logits that argmax to [3, 3, 0, 4]."""
    import torch

    logits = torch.zeros(1, 4, 8)
    for frame, index in enumerate([3, 3, 0, 4]):
        logits[0, frame, index] = 1.0

    module = MagicMock()
    module.return_value = logits
    return module


# ==================== Capture Fixtures ====================

class FakeSource:
    """In-memory stand-in for AudioSource; tests push chunks with ``feed``."""

    instances: list["FakeSource"] = []

    def __init__(self, config, sample_rate, on_chunk, on_error=None):
        self.config = config
        self.sample_rate = sample_rate
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.opened = False
        self.closed = False
        FakeSource.instances.append(self)

    def open(self):
        self.opened = True

    def close(self):
        self.closed = True

    def feed(self, *chunks):
        for chunk in chunks:
            self.on_chunk(chunk)

    def is_running(self):
        return self.opened and not self.closed


@pytest.fixture
def fake_source_factory():
    """Factory producing FakeSource instances; the list of created sources is on ``.instances``."""
    FakeSource.instances = []
    return FakeSource


@pytest.fixture
def mock_pipeline():
    """Pipeline double recording submitted buffers."""
    pipeline = MagicMock()
    counter = iter(range(1, 1000))

    def submit(samples, sample_rate, source):
        transaction = MagicMock()
        transaction.id = next(counter)
        transaction.samples = np.array(samples)
        transaction.sample_rate = sample_rate
        transaction.source = source
        return transaction

    pipeline.submit.side_effect = submit
    pipeline.pending_ids.return_value = []
    return pipeline
