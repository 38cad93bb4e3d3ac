"""Configuration management for listenkit."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class AudioConfig:
    """Audio capture configuration."""
    device: str = "default"
    sample_rate: int = 16000  # model rate, also used for bounded recording
    listen_sample_rate: int = 44100
    channels: int = 1
    chunk_size: int = 4096
    record_duration: float = 4.0  # seconds
    vad_threshold: float = 0.01
    queue_size: int = 64


@dataclass
class ModelConfig:
    """Acoustic model and decoding configuration."""
    name: str = "sample"
    models_dir: str = "./models"
    model_file: str = "model.pt"
    vocabulary_file: str = "token_list.json"
    device: str = "cpu"
    fft_size: int = 512
    hop_length: int = 256
    n_mels: int = 80
    lead_padding: int = 256
    blank_token: str = "<blank>"
    space_token: str = "<space>"
    subword_marker: str = "▁"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "./logs/listenkit.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            audio=AudioConfig(**data.get("audio", {})),
            model=ModelConfig(**data.get("model", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "audio": asdict(self.audio),
            "model": asdict(self.model),
            "logging": asdict(self.logging),
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        handlers = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
            force=True,
        )

    def ensure_directories(self) -> None:
        """Create necessary directories."""
        Path(self.model.models_dir).mkdir(parents=True, exist_ok=True)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment."""
    if path is None:
        path = os.environ.get("LISTENKIT_CONFIG", "config/settings.yaml")
    return Config.from_yaml(path)
