from pathlib import Path
from typing import Dict

import numpy as np
from PIL import Image
import pytest
import torch

from deeplab_service.config import Settings
from deeplab_service.model_loader import SegmentationModel

PERSON = 15


class BrightnessSegmenter(torch.nn.Module):
    """Stand-in for DeepLab: the person class wins wherever the input is bright.

    `margin` is the person logit over the other classes; 40 saturates the
    softmax to 1.0, small margins give realistic confidences.
    """

    def __init__(self, num_classes: int = 21, foreground_class: int = PERSON, margin: float = 40.0):
        super().__init__()
        self.margin = margin
        selector = torch.zeros(1, num_classes, 1, 1)
        selector[0, foreground_class] = 1.0
        self.register_buffer("selector", selector)

    def forward(self, x: torch.Tensor) -> Dict[str, torch.Tensor]:
        bright = (x.mean(dim=1, keepdim=True) > 0).to(x.dtype)
        return {"out": bright * self.margin * self.selector}


class ExplodingSegmenter(torch.nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        raise RuntimeError("backend crashed")


@pytest.fixture
def model_path(tmp_path: Path) -> Path:
    return tmp_path / "deeplab.pt"


@pytest.fixture
def settings(model_path: Path) -> Settings:
    return Settings(deeplab_model_path=model_path, device="cpu", model_input_size=64)


@pytest.fixture
def stub_model() -> SegmentationModel:
    return SegmentationModel(BrightnessSegmenter(), input_size=64, device=torch.device("cpu"))


@pytest.fixture
def subject_image() -> Image.Image:
    """400x400 white square subject over dark random noise."""
    size, margin = 400, 100
    rng = np.random.default_rng(0)
    pixels = rng.integers(0, 80, size=(size, size, 3), dtype=np.uint8)
    pixels[margin : size - margin, margin : size - margin] = 255
    return Image.fromarray(pixels)
