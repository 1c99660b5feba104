"""
N64 texture decoding to RGBA arrays and PNG export.

Decoders return ``(height, width, 4)`` uint8 arrays and raise ValueError when
the source buffer is too short for the requested texture.
"""

from __future__ import annotations

import pathlib

import numpy as np
from PIL import Image

from .config import TextureDescriptor, TextureFormat

SKYBOX_TILE = 32


def _take(data: bytes, offset: int, need: int, what: str) -> np.ndarray:
    if offset < 0 or offset + need > len(data):
        raise ValueError(f"{what} at 0x{offset:X} needs 0x{need:X} bytes, buffer has 0x{len(data):X}")
    return np.frombuffer(data, dtype=np.uint8, count=need, offset=offset)


def _nibbles(b: np.ndarray) -> np.ndarray:
    return np.stack([b >> 4, b & 0x0F], axis=-1).reshape(-1)


def decode_rgba16(data: bytes, offset: int, width: int, height: int) -> np.ndarray:
    n = width * height
    raw = _take(data, offset, n * 2, "RGBA16 image").astype(np.uint32)
    v = (raw[0::2] << 8) | raw[1::2]
    out = np.empty((n, 4), dtype=np.uint8)
    out[:, 0] = ((v >> 11) & 0x1F) * 255 // 31
    out[:, 1] = ((v >> 6) & 0x1F) * 255 // 31
    out[:, 2] = ((v >> 1) & 0x1F) * 255 // 31
    out[:, 3] = np.where(v & 1, 255, 0)
    return out.reshape(height, width, 4)


def decode_ia(data: bytes, offset: int, width: int, height: int, depth: int) -> np.ndarray:
    n = width * height
    if depth == 16:
        raw = _take(data, offset, n * 2, "IA16 image")
        inten = raw[0::2].astype(np.uint32)
        alpha = raw[1::2].astype(np.uint32)
    elif depth == 8:
        raw = _take(data, offset, n, "IA8 image").astype(np.uint32)
        inten = (raw >> 4) * 17
        alpha = (raw & 0x0F) * 17
    elif depth == 4:
        # 3-bit intensity + 1-bit alpha per texel
        raw = _take(data, offset, (n + 1) // 2, "IA4 image")
        v = _nibbles(raw)[:n].astype(np.uint32)
        inten = ((v >> 1) & 0x7) * 255 // 7
        alpha = np.where(v & 1, 255, 0)
    elif depth == 1:
        raw = _take(data, offset, (n + 7) // 8, "IA1 image")
        bits = np.unpackbits(raw)[:n].astype(np.uint32)
        inten = bits * 255
        alpha = inten
    else:
        raise ValueError(f"unsupported IA depth {depth}")
    out = np.empty((n, 4), dtype=np.uint8)
    out[:, 0] = inten
    out[:, 1] = inten
    out[:, 2] = inten
    out[:, 3] = alpha
    return out.reshape(height, width, 4)


def decode_skybox(data: bytes, offset: int, width: int, height: int) -> np.ndarray:
    """Stitch a grid of 32x32 RGBA16 tiles, dropping each tile's overlapping last row and column."""
    if width % SKYBOX_TILE or height % SKYBOX_TILE:
        raise ValueError(f"skybox size {width}x{height} is not a multiple of {SKYBOX_TILE}")
    cols = width // SKYBOX_TILE
    rows = height // SKYBOX_TILE
    step = SKYBOX_TILE - 1
    out = np.zeros((rows * step, cols * step, 4), dtype=np.uint8)
    tile_off = offset
    for ty in range(rows):
        for tx in range(cols):
            tile = decode_rgba16(data, tile_off, SKYBOX_TILE, SKYBOX_TILE)
            out[ty * step : (ty + 1) * step, tx * step : (tx + 1) * step] = tile[:step, :step]
            tile_off += SKYBOX_TILE * SKYBOX_TILE * 2
    return out


def decode_texture(data: bytes, tex: TextureDescriptor) -> np.ndarray:
    if tex.format is TextureFormat.IA:
        if tex.depth is None:
            raise ValueError("IA texture requires a depth")
        return decode_ia(data, tex.offset, tex.width, tex.height, tex.depth)
    if tex.format is TextureFormat.RGBA:
        return decode_rgba16(data, tex.offset, tex.width, tex.height)
    if tex.format is TextureFormat.SKYBOX:
        return decode_skybox(data, tex.offset, tex.width, tex.height)
    raise ValueError(f"unsupported texture format {tex.format}")


def texture_filename(tex: TextureDescriptor) -> str:
    if tex.format is TextureFormat.IA:
        return f"0x{tex.offset:05X}.ia{tex.depth}.png"
    if tex.format is TextureFormat.SKYBOX:
        return f"0x{tex.offset:05X}.skybox.png"
    return f"0x{tex.offset:05X}.png"


def save_png(out_path: pathlib.Path, pixels: np.ndarray) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(out_path)
