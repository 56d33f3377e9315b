"""
Configuration loader for the DeepLab background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on the segmentation pipeline and to make tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_ARCHS = {
    "deeplabv3_mobilenet_v3_large",
    "deeplabv3_resnet50",
    "deeplabv3_resnet101",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Model
    deeplab_model_path: Path = Field(...)
    deeplab_model_arch: str = Field("deeplabv3_mobilenet_v3_large")
    deeplab_num_classes: int = Field(21)
    model_input_size: int = Field(513)
    device: Optional[str] = Field(None)

    # Mask building
    foreground_class_index: int = Field(15)  # Pascal VOC "person"
    class_map_min: float = Field(0.0)
    class_map_max: float = Field(1.0)
    # "labels" keys arg-max pixels; "probabilities" keys the softmax slice
    class_map_source: str = Field("labels")
    color_cube_dimension: int = Field(64)

    # Feathering
    mask_blur_radius: float = Field(2.0)

    log_level: str = Field("INFO")

    # Debugging
    debug: bool = Field(False)
    debug_output_dir: Path = Field(Path("/tmp/deeplab_debug"))

    @field_validator("deeplab_model_arch")
    @classmethod
    def validate_arch(cls, v: str) -> str:
        if v not in SUPPORTED_ARCHS:
            raise ValueError(
                "DEEPLAB_MODEL_ARCH must be one of " + "|".join(sorted(SUPPORTED_ARCHS))
            )
        return v

    @field_validator("model_input_size", "deeplab_num_classes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("class_map_source")
    @classmethod
    def validate_class_map_source(cls, v: str) -> str:
        if v not in {"labels", "probabilities"}:
            raise ValueError("CLASS_MAP_SOURCE must be one of labels|probabilities")
        return v

    @field_validator("color_cube_dimension")
    @classmethod
    def validate_cube_dimension(cls, v: int) -> int:
        if not 2 <= v <= 128:
            raise ValueError("COLOR_CUBE_DIMENSION must be within 2..128")
        return v

    @field_validator("mask_blur_radius")
    @classmethod
    def validate_blur_radius(cls, v: float) -> float:
        if v < 0:
            raise ValueError("MASK_BLUR_RADIUS must not be negative")
        return v

    @model_validator(mode="after")
    def validate_class_map_bounds(self) -> "Settings":
        if self.class_map_max <= self.class_map_min:
            raise ValueError("CLASS_MAP_MAX must be greater than CLASS_MAP_MIN")
        if not 0 <= self.foreground_class_index < self.deeplab_num_classes:
            raise ValueError("FOREGROUND_CLASS_INDEX must address one of the model's classes")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
