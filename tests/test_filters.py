import numpy as np
import pytest

from deeplab_service.errors import PostProcessError
from deeplab_service.filters import ColorCubeLookup, GaussianBlur, SourceOutComposite, chroma_key_cube


def test_chroma_key_cube_keys_out_full_brightness():
    cube = chroma_key_cube(64)

    assert cube.shape == (64, 64, 64, 4)
    assert cube[63, 63, 63, 3] == 0.0  # white
    assert cube[0, 0, 63, 3] == 0.0  # pure red is also at full brightness
    assert cube[62, 62, 62, 3] == 1.0
    assert cube[0, 0, 0, 3] == 1.0
    # premultiplied: keyed entries carry no color
    assert np.all(cube[63, 63, 63, :3] == 0.0)
    assert np.allclose(cube[10, 20, 30, :3], np.array([30, 20, 10]) / 63.0)


def test_chroma_key_cube_is_shared_and_read_only():
    cube = chroma_key_cube(16)
    assert chroma_key_cube(16) is cube
    with pytest.raises(ValueError):
        cube[0, 0, 0, 3] = 0.5


def test_color_cube_lookup_only_keys_exact_white():
    lookup = ColorCubeLookup(dimension=64, data=chroma_key_cube(64))
    gray = np.array([[255, 254, 128, 0]], dtype=np.float32) / 255.0
    rgb = np.repeat(gray[..., None], 3, axis=2)

    out = lookup.apply(rgb)

    assert out.shape == (1, 4, 4)
    assert list(out[0, :, 3]) == [0.0, 1.0, 1.0, 1.0]


def test_color_cube_lookup_rejects_bad_cube():
    with pytest.raises(ValueError):
        ColorCubeLookup(dimension=8, data=chroma_key_cube(16))


@pytest.mark.parametrize("shape", [(1, 1), (7, 13), (64, 64), (5, 200)])
def test_blur_preserves_extent(shape):
    rgba = np.random.default_rng(1).random(shape + (4,), dtype=np.float32)
    out = GaussianBlur(radius=2.0).apply(rgba)
    assert out.shape == rgba.shape


def test_blur_clamps_edges_instead_of_fading():
    rgba = np.ones((20, 30, 4), dtype=np.float32)
    out = GaussianBlur(radius=2.0).apply(rgba)
    assert np.allclose(out, 1.0, atol=1e-5)


def test_blur_feathers_hard_edges():
    rgba = np.zeros((32, 32, 4), dtype=np.float32)
    rgba[:, 16:] = 1.0
    out = GaussianBlur(radius=2.0).apply(rgba)
    row = out[16, :, 3]
    assert row[0] == pytest.approx(0.0, abs=1e-5)
    assert row[-1] == pytest.approx(1.0, abs=1e-5)
    assert 0.0 < row[15] < 0.5 < row[16] < 1.0


def test_blur_radius_zero_is_identity():
    rgba = np.random.default_rng(2).random((6, 6, 4), dtype=np.float32)
    out = GaussianBlur(radius=0.0).apply(rgba)
    assert out is not rgba
    assert np.array_equal(out, rgba)


def test_blur_rejects_unsupported_pixels():
    with pytest.raises(PostProcessError):
        GaussianBlur().apply(np.zeros((4, 4, 3), dtype=np.float32))
    with pytest.raises(PostProcessError):
        GaussianBlur().apply(np.zeros((4, 4, 4), dtype=np.uint8))
    with pytest.raises(PostProcessError):
        GaussianBlur(radius=-1.0).apply(np.zeros((4, 4, 4), dtype=np.float32))


def test_source_out_keeps_source_where_stencil_is_clear():
    source = np.ones((2, 2, 4), dtype=np.float32)
    stencil = np.zeros((2, 2, 4), dtype=np.float32)
    stencil[0, :, 3] = 1.0
    stencil[1, 1, 3] = 0.25

    out = SourceOutComposite().apply(source, stencil)

    assert np.all(out[0] == 0.0)
    assert np.all(out[1, 0] == 1.0)
    assert np.allclose(out[1, 1], 0.75)


def test_source_out_rejects_mismatched_shapes():
    with pytest.raises(PostProcessError):
        SourceOutComposite().apply(np.zeros((2, 2, 4)), np.zeros((3, 3, 4)))
