"""
Typed image filters used by the mask and compositing stages.

All filters operate on float32 numpy arrays in premultiplied RGBA, shape
(H, W, 4), values in [0, 1], and always return a new array.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import math

import cv2
import numpy as np

from .errors import PostProcessError


@lru_cache(maxsize=None)
def chroma_key_cube(dimension: int = 64) -> np.ndarray:
    """
    Build a color cube that keys out pure-brightness colors.

    Entries are indexed [blue, green, red]. A lattice color whose HSV
    brightness is exactly 1.0 maps to alpha 0, every other color to alpha 1,
    with the color channels premultiplied by alpha. The returned array is
    read-only and shared between callers.
    """
    if dimension < 2:
        raise ValueError("Color cube dimension must be at least 2")
    steps = np.linspace(0.0, 1.0, dimension, dtype=np.float32)
    blue, green, red = np.meshgrid(steps, steps, steps, indexing="ij")
    rgb = np.stack((red, green, blue), axis=-1)

    hsv = cv2.cvtColor(rgb.reshape(-1, 1, 3), cv2.COLOR_RGB2HSV)
    brightness = hsv[..., 2].reshape(dimension, dimension, dimension)
    alpha = np.where(brightness == 1.0, 0.0, 1.0).astype(np.float32)

    cube = np.concatenate((rgb * alpha[..., None], alpha[..., None]), axis=-1)
    cube.setflags(write=False)
    return cube


@dataclass(frozen=True)
class ColorCubeLookup:
    """
    3D color lookup table, nearest lower lattice point.

    Unlike an interpolating color cube, inputs between lattice points are
    not blended, so a keyed entry only affects colors that floor onto it.
    """

    dimension: int
    data: np.ndarray  # (dimension, dimension, dimension, 4), indexed [b, g, r]

    def __post_init__(self) -> None:
        expected = (self.dimension,) * 3 + (4,)
        if self.data.shape != expected:
            raise ValueError(f"Cube data has shape {self.data.shape}, expected {expected}")

    def apply(self, rgb: np.ndarray) -> np.ndarray:
        """Map each RGB pixel to the cube entry at its lower lattice point."""
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise PostProcessError(f"Color cube expects an RGB image, got shape {rgb.shape}")
        scaled = np.floor(np.clip(rgb, 0.0, 1.0) * (self.dimension - 1))
        idx = np.clip(scaled, 0, self.dimension - 1).astype(np.intp)
        return self.data[idx[..., 2], idx[..., 1], idx[..., 0]].astype(np.float32)


@dataclass(frozen=True)
class GaussianBlur:
    radius: float = 2.0

    def apply(self, rgba: np.ndarray) -> np.ndarray:
        """
        Blur with edge clamping so borders do not fade towards transparent.

        The image is padded with replicated edge pixels, blurred, then cropped
        back to its original extent.
        """
        if self.radius < 0:
            raise PostProcessError(f"Blur radius must not be negative, got {self.radius}")
        if rgba.ndim != 3 or rgba.shape[2] != 4 or not np.issubdtype(rgba.dtype, np.floating):
            raise PostProcessError(
                f"Blur expects float RGBA pixels, got shape {rgba.shape} dtype {rgba.dtype}"
            )
        if self.radius == 0:
            return rgba.astype(np.float32, copy=True)

        height, width = rgba.shape[:2]
        pad = int(math.ceil(4 * self.radius))
        padded = cv2.copyMakeBorder(
            rgba.astype(np.float32), pad, pad, pad, pad, cv2.BORDER_REPLICATE
        )
        blurred = cv2.GaussianBlur(
            padded,
            (0, 0),
            sigmaX=self.radius,
            sigmaY=self.radius,
            borderType=cv2.BORDER_REPLICATE,
        )
        return np.ascontiguousarray(blurred[pad : pad + height, pad : pad + width])


@dataclass(frozen=True)
class SourceOutComposite:
    """Keep the source only where the stencil is transparent."""

    def apply(self, source: np.ndarray, stencil: np.ndarray) -> np.ndarray:
        if source.shape != stencil.shape or source.ndim != 3 or source.shape[2] != 4:
            raise PostProcessError(
                f"Cannot composite {source.shape} against stencil {stencil.shape}"
            )
        coverage = 1.0 - np.clip(stencil[..., 3:4], 0.0, 1.0)
        return (source * coverage).astype(np.float32)
