"""
Image resizing and preprocessing for DeepLabV3.

DeepLab runs at a fixed square resolution, so images are stretched to the
model size (no letterboxing) and normalized with the ImageNet statistics the
torchvision weights were trained with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image
import torch

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


@dataclass(frozen=True)
class PixelBuffer:
    tensor: torch.Tensor  # (1, 3, H, W) planar RGB, normalized
    width: int
    height: int

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


def _validate_size(size: Tuple[int, int]) -> Tuple[int, int]:
    width, height = int(size[0]), int(size[1])
    if width <= 0 or height <= 0:
        raise ValueError(f"Target size must be positive, got {width}x{height}")
    return width, height


def resize(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """
    Stretch `image` to exactly `size` (width, height).

    Aspect ratio is not preserved. Resizing to the current size returns a
    pixel-identical copy so callers never share the input object.
    """
    width, height = _validate_size(size)
    if image.width <= 0 or image.height <= 0:
        raise ValueError("Cannot resize an empty image")
    if image.size == (width, height):
        return image.copy()
    return image.resize((width, height), Image.BILINEAR)


def to_pixel_buffer(
    image: Image.Image, size: Tuple[int, int], device: Optional[torch.device] = None
) -> PixelBuffer:
    """Resize to the model resolution and normalize into a CHW float tensor."""
    width, height = _validate_size(size)
    rgb = resize(image, (width, height)).convert("RGB")

    im_np = np.asarray(rgb).astype("float32") / 255.0
    im_np = (im_np - IMAGENET_MEAN) / IMAGENET_STD
    im_np = np.ascontiguousarray(np.transpose(im_np, (2, 0, 1)))  # HWC -> CHW

    tensor = torch.from_numpy(im_np).unsqueeze(0)
    if device is not None:
        tensor = tensor.to(device)
    return PixelBuffer(tensor=tensor, width=width, height=height)
