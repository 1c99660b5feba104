import numpy as np
import pytest
from PIL import Image

from n64split import graphics
from n64split.config import TextureDescriptor, TextureFormat


def test_rgba16_channels():
    data = bytes([0xF8, 0x01, 0x07, 0xC1, 0x00, 0x3F, 0x00, 0x00])
    px = graphics.decode_rgba16(data, 0, 2, 2)
    assert px.shape == (2, 2, 4)
    assert px[0, 0].tolist() == [255, 0, 0, 255]
    assert px[0, 1].tolist() == [0, 255, 0, 255]
    assert px[1, 0].tolist() == [0, 0, 255, 255]
    assert px[1, 1].tolist() == [0, 0, 0, 0]


@pytest.mark.parametrize(
    "depth,data,first",
    [
        (16, bytes([0x80, 0xFF, 0, 0]), [0x80, 0x80, 0x80, 0xFF]),
        (8, bytes([0xF0, 0x0F]), [255, 255, 255, 0]),
        (4, bytes([0xF1]), [255, 255, 255, 255]),
        (1, bytes([0b10000000]), [255, 255, 255, 255]),
    ],
)
def test_ia_first_texel(depth, data, first):
    width = 8 if depth == 1 else 2
    px = graphics.decode_ia(data, 0, width, 1, depth)
    assert px.shape == (1, width, 4)
    assert px[0, 0].tolist() == first


def test_ia4_low_nibble():
    px = graphics.decode_ia(bytes([0xF1]), 0, 2, 1, 4)
    assert px[0, 1].tolist() == [0, 0, 0, 255]


def test_skybox_stitches_tiles_without_overlap():
    tile = 32 * 32 * 2
    data = bytes([0xF8, 0x01]) * (tile // 2) + bytes([0x00, 0x3F]) * (tile // 2)
    px = graphics.decode_skybox(data, 0, 64, 32)
    assert px.shape == (31, 62, 4)
    assert px[0, 0].tolist() == [255, 0, 0, 255]
    assert px[0, 31].tolist() == [0, 0, 255, 255]


def test_truncated_buffer_raises():
    with pytest.raises(ValueError):
        graphics.decode_rgba16(b"\x00" * 10, 0, 4, 4)
    with pytest.raises(ValueError):
        graphics.decode_ia(b"\x00" * 4, 2, 2, 2, 8)
    with pytest.raises(ValueError):
        graphics.decode_skybox(b"\x00" * 2048, 0, 64, 32)


def test_decode_texture_dispatch():
    data = b"\x00" * 64
    assert graphics.decode_texture(data, TextureDescriptor(0, 4, 4, TextureFormat.IA, 8)).shape == (4, 4, 4)
    assert graphics.decode_texture(data, TextureDescriptor(0, 4, 4, TextureFormat.RGBA)).shape == (4, 4, 4)
    with pytest.raises(ValueError):
        graphics.decode_texture(data, TextureDescriptor(0, 4, 4, TextureFormat.IA))


def test_texture_filenames():
    assert graphics.texture_filename(TextureDescriptor(0x1A0, 8, 8, TextureFormat.IA, 4)) == "0x001A0.ia4.png"
    assert graphics.texture_filename(TextureDescriptor(0x20, 8, 8, TextureFormat.RGBA)) == "0x00020.png"
    assert graphics.texture_filename(TextureDescriptor(0, 32, 32, TextureFormat.SKYBOX)) == "0x00000.skybox.png"


def test_save_png(tmp_path):
    px = np.zeros((3, 5, 4), dtype=np.uint8)
    px[..., 3] = 255
    out = tmp_path / "nested" / "t.png"
    graphics.save_png(out, px)
    with Image.open(out) as im:
        assert im.size == (5, 3)
        assert im.mode == "RGBA"
