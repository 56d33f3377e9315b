import pydantic
import pytest

from deeplab_service import config
from deeplab_service.config import Settings


def test_defaults(model_path):
    settings = Settings(deeplab_model_path=model_path)
    assert settings.model_input_size == 513
    assert settings.foreground_class_index == 15
    assert (settings.class_map_min, settings.class_map_max) == (0.0, 1.0)
    assert settings.color_cube_dimension == 64
    assert settings.mask_blur_radius == 2.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"deeplab_model_arch": "unet"},
        {"class_map_min": 1.0, "class_map_max": 1.0},
        {"color_cube_dimension": 1},
        {"mask_blur_radius": -1.0},
        {"model_input_size": 0},
        {"foreground_class_index": 21},
    ],
)
def test_rejects_invalid_values(model_path, overrides):
    with pytest.raises(pydantic.ValidationError):
        Settings(deeplab_model_path=model_path, **overrides)


def test_get_settings_reads_environment(monkeypatch, model_path):
    monkeypatch.setenv("DEEPLAB_MODEL_PATH", str(model_path))
    monkeypatch.setenv("MASK_BLUR_RADIUS", "3.5")
    config.get_settings.cache_clear()
    try:
        settings = config.get_settings()
        assert settings.deeplab_model_path == model_path
        assert settings.mask_blur_radius == 3.5
    finally:
        config.get_settings.cache_clear()


def test_class_map_source_defaults_to_labels(model_path):
    assert Settings(deeplab_model_path=model_path).class_map_source == "labels"
    with pytest.raises(pydantic.ValidationError):
        Settings(deeplab_model_path=model_path, class_map_source="logits")
