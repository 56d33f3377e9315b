"""Mask building, feathering and compositing for DeepLab class maps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import PostProcessError
from .filters import ColorCubeLookup, GaussianBlur, SourceOutComposite, chroma_key_cube
from .model_loader import ClassMap
from .preprocessing import resize

logger = logging.getLogger(__name__)

ORIENTATION_TAG = 0x0112


class ResultKind(str, Enum):
    BACKGROUND = "background"
    FINAL_IMAGE = "finalImage"


@dataclass(frozen=True)
class Mask:
    """Chroma-keyed class map, premultiplied RGBA float32 of shape (H, W, 4)."""

    rgba: np.ndarray

    @property
    def alpha(self) -> np.ndarray:
        return self.rgba[..., 3]

    @property
    def size(self) -> Tuple[int, int]:
        return int(self.rgba.shape[1]), int(self.rgba.shape[0])

    def to_image(self) -> Image.Image:
        return premultiplied_to_image(self.rgba)


def image_to_premultiplied(image: Image.Image) -> np.ndarray:
    rgba = np.asarray(image.convert("RGBA")).astype(np.float32) / 255.0
    rgba[..., :3] *= rgba[..., 3:4]
    return rgba


def premultiplied_to_image(rgba: np.ndarray) -> Image.Image:
    """Un-premultiply and pack into an 8-bit RGBA PIL image."""
    rgba = np.clip(rgba, 0.0, 1.0)
    alpha = rgba[..., 3:4]
    with np.errstate(divide="ignore", invalid="ignore"):
        rgb = np.where(alpha > 0, rgba[..., :3] / alpha, 0.0)
    rgb_u8 = np.rint(np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)
    alpha_u8 = np.rint(alpha * 255.0).astype(np.uint8)
    return Image.fromarray(np.ascontiguousarray(np.dstack((rgb_u8, alpha_u8))))


def class_layer_to_gray(layer: np.ndarray, norm_min: float = 0.0, norm_max: float = 1.0) -> np.ndarray:
    """
    Render one class layer as an 8-bit grayscale image.

    Values are mapped linearly so `norm_min` becomes black and `norm_max`
    white; anything outside the bounds is clamped.
    """
    if norm_max <= norm_min:
        raise PostProcessError(f"Invalid normalization bounds [{norm_min}, {norm_max}]")
    scaled = (layer.astype(np.float32) - norm_min) / (norm_max - norm_min)
    return np.rint(np.clip(scaled, 0.0, 1.0) * 255.0).astype(np.uint8)


LAYER_SOURCES = {"labels", "probabilities"}


def class_layer(class_map: ClassMap, class_index: int, source: str = "labels") -> np.ndarray:
    """
    Extract the foreground layer for `class_index`.

    "labels" gives 1.0 wherever the arg-max class is `class_index` and 0.0
    elsewhere. "probabilities" returns the raw softmax slice, which only
    reaches 1.0 for near-certain pixels and needs recalibrated bounds.
    """
    if source not in LAYER_SOURCES:
        raise PostProcessError(f"Unknown class layer source: {source!r}")
    try:
        probabilities = class_map.layer(class_index)
    except IndexError as exc:
        raise PostProcessError(str(exc)) from exc
    if source == "probabilities":
        return probabilities
    return (class_map.labels == class_index).astype(np.float32)


def build_mask(
    class_map: ClassMap,
    class_index: int,
    norm_min: float = 0.0,
    norm_max: float = 1.0,
    cube_dimension: int = 64,
    source: str = "labels",
) -> Mask:
    """
    Key the class layer into a stencil.

    Pixels whose normalized value sits at `norm_max` become fully
    transparent; every other pixel is opaque and keeps its gray level
    (premultiplied). A uniform layer gives a uniform mask.
    """
    layer = class_layer(class_map, class_index, source)

    gray = class_layer_to_gray(layer, norm_min, norm_max)
    rgb = np.repeat(gray[..., None].astype(np.float32) / 255.0, 3, axis=2)

    lookup = ColorCubeLookup(dimension=cube_dimension, data=chroma_key_cube(cube_dimension))
    rgba = lookup.apply(rgb)
    logger.debug(
        "mask: class=%d keyed fraction=%.4f", class_index, float(np.mean(rgba[..., 3] == 0.0))
    )
    return Mask(rgba=rgba)


def blur_mask(mask: Mask, radius: float = 2.0) -> Mask:
    """Feather mask edges; the result has the same extent as the input."""
    return Mask(rgba=GaussianBlur(radius=radius).apply(mask.rgba))


def _copy_orientation(source: Image.Image, target: Image.Image) -> None:
    orientation = source.getexif().get(ORIENTATION_TAG)
    if not orientation:
        return
    exif = target.getexif()
    exif[ORIENTATION_TAG] = orientation
    target.info["exif"] = exif.tobytes()


def composite(
    foreground: Image.Image,
    mask: Mask,
    kind: ResultKind,
    output_size: Tuple[int, int],
    orientation_source: Optional[Image.Image] = None,
) -> Image.Image:
    """
    Produce the requested result at `output_size`.

    FINAL_IMAGE cuts the opaque stencil regions out of `foreground`
    (source-out); BACKGROUND renders the stencil itself. The foreground is
    resized to the mask extent before compositing.
    """
    if kind is ResultKind.FINAL_IMAGE:
        source = image_to_premultiplied(resize(foreground, mask.size))
        result = premultiplied_to_image(SourceOutComposite().apply(source, mask.rgba))
        return resize(result, output_size)

    if kind is ResultKind.BACKGROUND:
        result = resize(mask.to_image(), output_size)
        if orientation_source is not None:
            _copy_orientation(orientation_source, result)
        return result

    raise PostProcessError(f"Unknown result kind: {kind!r}")


def maybe_dump_debug(mask: Mask, name: str, debug_dir: Path) -> None:
    """Write the mask alpha as a PNG when debugging is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        path = debug_dir / f"{name}.png"
        alpha_u8 = np.rint(np.clip(mask.alpha, 0.0, 1.0) * 255.0).astype(np.uint8)
        cv2.imwrite(str(path), alpha_u8)
        logger.debug("postprocess: wrote %s to %s", name, path)
    except Exception as exc:  # noqa: BLE001
        logger.warning("postprocess: failed to write debug output %s: %s", name, exc)
