"""Acoustic model registry, TorchScript inference and vocabulary loading."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import torch

from ..errors import ConfigurationError, SourceLoadFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSpec:
    """Input shape parameters of a model."""
    name: str
    min_length: int  # frames per inference call
    feature_width: int
    filler: float = -13.8


MODEL_SPECS: dict[str, ModelSpec] = {
    "sample": ModelSpec(name="sample", min_length=187, feature_width=80),
    "monica": ModelSpec(name="monica", min_length=650, feature_width=80),
}


def get_model_spec(name: str) -> ModelSpec:
    """Look up a model by name.

    Raises:
        ConfigurationError: if the name is not registered
    """
    try:
        return MODEL_SPECS[name]
    except KeyError:
        available = ", ".join(sorted(MODEL_SPECS))
        raise ConfigurationError(f"Unknown model '{name}' (available: {available})") from None


def load_vocabulary(models_dir: str | Path, model_name: str, filename: str = "token_list.json") -> list[str]:
    """
    Load the token list of a model.

    The file holds either a JSON list of tokens or an object with a
    ``token_list`` key.

    Raises:
        SourceLoadFailure: if the file is missing or malformed
    """
    path = Path(models_dir) / model_name / filename
    logger.info(f"Loading vocabulary: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SourceLoadFailure(f"Cannot load vocabulary {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("token_list")
    if not isinstance(data, list) or not all(isinstance(token, str) for token in data):
        raise SourceLoadFailure(f"Vocabulary {path} is not a list of strings")

    logger.info(f"Vocabulary loaded: {len(data)} tokens")
    return data


class CTCModel:
    """TorchScript CTC acoustic model producing one class index per frame."""

    def __init__(self, path: str | Path, feature_width: int, device: str = "cpu"):
        self.path = Path(path)
        self.feature_width = feature_width
        self.device = device
        self._module: Optional[torch.jit.ScriptModule] = None

    @property
    def is_loaded(self) -> bool:
        return self._module is not None

    def load(self) -> None:
        """Load the TorchScript module."""
        logger.info(f"Loading model: {self.path} on {self.device}")
        try:
            module = torch.jit.load(str(self.path), map_location=self.device)
        except Exception as e:
            raise SourceLoadFailure(f"Cannot load model {self.path}: {e}") from e
        module.eval()
        self._module = module
        logger.info("Model loaded")

    def infer(self, features: np.ndarray) -> np.ndarray:
        """
        Run the model on normalized features.

        Args:
            features: Array of shape (min_length, feature_width)

        Returns:
            int64 array with one class index per frame
        """
        if self._module is None:
            self.load()

        if features.ndim != 2 or features.shape[1] != self.feature_width:
            raise ConfigurationError(
                f"Feature shape {features.shape} does not match model width {self.feature_width}"
            )

        inputs = torch.from_numpy(np.ascontiguousarray(features, dtype=np.float32)).unsqueeze(0).to(self.device)
        with torch.no_grad():
            outputs = self._module(inputs)

        if outputs.is_floating_point():
            outputs = outputs.argmax(dim=-1)
        return outputs.reshape(-1).cpu().numpy().astype(np.int64)

    __call__ = infer
