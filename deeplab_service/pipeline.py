"""
High-level DeepLab background-removal pipeline.

`BackgroundRemover.remove_background` is the main entry point. Orchestration
is a straight line:
image -> resize -> DeepLab -> stencil mask -> feathering -> composite -> resize.

Any stage failure ends the run with `None`; no partial result is returned.
"""

from __future__ import annotations

from enum import Enum
from io import BytesIO
import logging
from pathlib import Path
from typing import Optional

from PIL import Image

from . import config
from .errors import DeepLabServiceError, ModelLoadError
from .model_loader import SegmentationModel
from .postprocessing import ResultKind, blur_mask, build_mask, composite, maybe_dump_debug
from .preprocessing import resize, to_pixel_buffer

logger = logging.getLogger(__name__)

__all__ = ["BackgroundRemover", "PipelineStage", "ResultKind", "process_image_bytes"]


class PipelineStage(str, Enum):
    START = "start"
    RESIZED = "resized"
    INFERRED = "inferred"
    MASK_BUILT = "mask_built"
    MASK_BLURRED = "mask_blurred"
    COMPOSITED = "composited"
    DONE = "done"
    FAILED = "failed"


class BackgroundRemover:
    """Runs the segmentation-to-composite pipeline with an injected model."""

    def __init__(self, model: Optional[SegmentationModel], settings: config.Settings):
        self.model = model
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "BackgroundRemover":
        """
        Load the model once and build a remover around it.

        A model that fails to load leaves the remover permanently unusable:
        every call returns None instead of raising.
        """
        settings = settings or config.get_settings()
        try:
            model: Optional[SegmentationModel] = SegmentationModel.load(settings)
        except ModelLoadError as exc:
            logger.error("DeepLab model unavailable: %s", exc)
            model = None
        return cls(model, settings)

    def remove_background(self, image: Image.Image, result_kind: ResultKind) -> Optional[Image.Image]:
        """Return the requested result at the input's size, or None on any failure."""
        if self.model is None:
            logger.warning("remove_background: no model loaded, returning no result")
            return None

        stage = PipelineStage.START
        try:
            image.load()
            if image.width <= 0 or image.height <= 0:
                raise ValueError("Input image has no pixels")
            output_size = image.size
            model_size = (self.model.input_size, self.model.input_size)

            source = image if image.mode in ("RGB", "RGBA") else image.convert("RGBA")
            resized = resize(source, model_size)
            pixel_buffer = to_pixel_buffer(resized, model_size, device=self.model.device)
            stage = self._advance(stage, PipelineStage.RESIZED)

            class_map = self.model.predict(pixel_buffer)
            stage = self._advance(stage, PipelineStage.INFERRED)

            mask = build_mask(
                class_map,
                self.settings.foreground_class_index,
                norm_min=self.settings.class_map_min,
                norm_max=self.settings.class_map_max,
                cube_dimension=self.settings.color_cube_dimension,
                source=self.settings.class_map_source,
            )
            stage = self._advance(stage, PipelineStage.MASK_BUILT)

            blurred = blur_mask(mask, radius=self.settings.mask_blur_radius)
            stage = self._advance(stage, PipelineStage.MASK_BLURRED)

            if self.settings.debug:
                debug_dir = Path(self.settings.debug_output_dir)
                maybe_dump_debug(mask, "mask", debug_dir)
                maybe_dump_debug(blurred, "mask_blurred", debug_dir)

            result = composite(
                resized,
                blurred,
                ResultKind(result_kind),
                output_size,
                orientation_source=image,
            )
            stage = self._advance(stage, PipelineStage.COMPOSITED)
        except (DeepLabServiceError, ValueError, OSError) as exc:
            logger.warning(
                "remove_background: %s failed after stage=%s: %s",
                result_kind,
                stage.value,
                exc,
            )
            logger.debug("remove_background: stage=%s", PipelineStage.FAILED.value, exc_info=True)
            return None

        self._advance(stage, PipelineStage.DONE)
        return result

    @staticmethod
    def _advance(current: PipelineStage, nxt: PipelineStage) -> PipelineStage:
        logger.debug("remove_background: %s -> %s", current.value, nxt.value)
        return nxt


def process_image_bytes(
    image_bytes: bytes,
    result_kind: ResultKind,
    remover: BackgroundRemover,
) -> bytes:
    """
    Full pipeline from encoded image bytes to PNG bytes.

    Raises:
        ValueError: when input is invalid or the pipeline produced nothing.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc

    result = remover.remove_background(image, result_kind)
    if result is None:
        raise ValueError("Background removal produced no result")

    buf = BytesIO()
    save_kwargs = {}
    if "exif" in result.info:
        save_kwargs["exif"] = result.info["exif"]
    result.save(buf, format="PNG", **save_kwargs)
    return buf.getvalue()
