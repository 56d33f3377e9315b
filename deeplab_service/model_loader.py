"""
Model loading and inference for DeepLabV3.

`SegmentationModel` is the only stateful piece of the pipeline:
 - `SegmentationModel.load()` reads the artifact at `DEEPLAB_MODEL_PATH` once
   (TorchScript first, then a torchvision state_dict),
 - `predict()` turns a fixed-size `PixelBuffer` into a per-class
   probability map (`ClassMap`).

Instances are explicitly constructed and passed to the pipeline; there is no
module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from threading import Lock
from typing import Optional, Tuple

import numpy as np
import torch
import torch.nn.functional as F
from torchvision.models import segmentation

from . import config
from .errors import InferenceError, ModelLoadError
from .preprocessing import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassMap:
    """Per-class softmax probabilities at model resolution, shape (C, H, W)."""

    scores: np.ndarray

    @property
    def num_classes(self) -> int:
        return int(self.scores.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return int(self.scores.shape[2]), int(self.scores.shape[1])

    @property
    def labels(self) -> np.ndarray:
        return np.argmax(self.scores, axis=0)

    def layer(self, class_index: int) -> np.ndarray:
        if not 0 <= class_index < self.num_classes:
            raise IndexError(
                f"class index {class_index} out of range for {self.num_classes} classes"
            )
        return self.scores[class_index]


def select_device(preferred: Optional[str] = None) -> torch.device:
    """Return the inference device; CUDA -> Apple MPS -> CPU unless overridden."""
    if preferred:
        return torch.device(preferred)
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():  # type: ignore[attr-defined]
        return torch.device("mps")
    return torch.device("cpu")


def _try_load_torchscript(model_path: Path, device: torch.device) -> torch.nn.Module:
    """Load a TorchScript export of DeepLab."""
    model = torch.jit.load(str(model_path), map_location=device)
    model.eval()
    return model


def _clean_state_dict(state_dict: dict) -> dict:
    """Remove common wrappers such as 'module.' prefixes."""
    cleaned = {}
    for key, value in state_dict.items():
        new_key = key
        if new_key.startswith("module."):
            new_key = new_key[len("module.") :]
        if new_key.startswith("model."):
            new_key = new_key[len("model.") :]
        cleaned[new_key] = value
    return cleaned


def _load_deeplab_from_state_dict(
    model_path: Path, settings: config.Settings, device: torch.device
) -> torch.nn.Module:
    """Load a vanilla PyTorch checkpoint into the torchvision DeepLabV3 architecture."""
    checkpoint = torch.load(model_path, map_location=device)
    if isinstance(checkpoint, dict) and "state_dict" in checkpoint:
        checkpoint = checkpoint["state_dict"]
    if not isinstance(checkpoint, dict):
        raise ModelLoadError("Unsupported checkpoint format for DeepLabV3")

    checkpoint = _clean_state_dict(checkpoint)
    builder = getattr(segmentation, settings.deeplab_model_arch)
    model = builder(
        weights=None,
        weights_backbone=None,
        num_classes=settings.deeplab_num_classes,
        aux_loss=any(key.startswith("aux_classifier.") for key in checkpoint),
    )
    missing, unexpected = model.load_state_dict(checkpoint, strict=False)
    if len(unexpected) == len(checkpoint):
        raise ModelLoadError(
            f"Checkpoint at {model_path} shares no weights with {settings.deeplab_model_arch}"
        )
    if missing:
        logger.warning("Missing keys when loading DeepLab checkpoint: %s", missing)
    if unexpected:
        logger.warning("Unexpected keys when loading DeepLab checkpoint: %s", unexpected)

    model.to(device)
    model.eval()
    return model


class SegmentationModel:
    """Wraps a loaded DeepLab network for thread-safe, deterministic inference."""

    def __init__(self, network: torch.nn.Module, input_size: int, device: torch.device):
        self._network = network
        self._network.eval()
        self.input_size = input_size
        self.device = device
        # The forward pass is serialized; the runtime may not be reentrant.
        self._lock = Lock()

    @classmethod
    def load(cls, settings: Optional[config.Settings] = None) -> "SegmentationModel":
        """
        Build an adapter from the artifact configured in settings.

        Raises:
            ModelLoadError: when the artifact is missing, corrupt or does not
                fit the configured architecture.
        """
        settings = settings or config.get_settings()
        model_path = settings.deeplab_model_path
        device = select_device(settings.device)

        if not model_path.is_file():
            raise ModelLoadError(f"DeepLab checkpoint not found at {model_path}")
        if model_path.stat().st_size == 0:
            raise ModelLoadError(f"DeepLab checkpoint at {model_path} is empty")

        try:
            logger.info("Attempting to load TorchScript model from %s", model_path)
            network = _try_load_torchscript(model_path, device)
        except Exception as script_error:  # noqa: BLE001
            logger.info("TorchScript load failed, falling back to state_dict. Error: %s", script_error)
            try:
                network = _load_deeplab_from_state_dict(model_path, settings, device)
            except ModelLoadError:
                raise
            except Exception as exc:  # noqa: BLE001
                raise ModelLoadError(f"Could not load DeepLab checkpoint at {model_path}") from exc

        logger.info("DeepLab loaded on device: %s", device)
        return cls(network, input_size=settings.model_input_size, device=device)

    def predict(self, pixel_buffer: PixelBuffer) -> ClassMap:
        """
        Run DeepLab on a model-sized buffer.

        Raises:
            ValueError: when the buffer is not `input_size` x `input_size`.
            InferenceError: when the network fails or returns an unusable output.
        """
        expected = (self.input_size, self.input_size)
        if pixel_buffer.size != expected:
            raise ValueError(
                f"Pixel buffer is {pixel_buffer.width}x{pixel_buffer.height}, "
                f"model expects {expected[0]}x{expected[1]}"
            )

        try:
            with self._lock, torch.no_grad():
                output = self._network(pixel_buffer.tensor.to(self.device))
                if isinstance(output, dict):
                    output = output["out"]
                if output.dim() != 4 or output.shape[0] != 1:
                    raise InferenceError(f"Unexpected DeepLab output shape {tuple(output.shape)}")
                if tuple(output.shape[2:]) != (pixel_buffer.height, pixel_buffer.width):
                    output = F.interpolate(
                        output,
                        size=(pixel_buffer.height, pixel_buffer.width),
                        mode="bilinear",
                        align_corners=False,
                    )
                probabilities = torch.softmax(output[0].float(), dim=0)
                scores = probabilities.detach().cpu().numpy()
        except InferenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise InferenceError("DeepLab inference failed") from exc

        return ClassMap(scores=scores.astype(np.float32, copy=False))
