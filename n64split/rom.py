"""
ROM image loading and header helpers.

Images are normalised to big-endian (.z64) byte order on load; every other
module in the package assumes big-endian data.
"""

from __future__ import annotations

import pathlib
import struct
from typing import Dict, List, Tuple, Union

MAX_ROM_SIZE = 256 * 1024 * 1024
HEADER_SIZE = 0x40


def be32(b: bytes, off: int) -> int:
    return struct.unpack_from(">I", b, off)[0]


def hex_bytes(b: bytes) -> str:
    return ", ".join(f"0x{v:02X}" for v in b)


# first word of the header as stored by each dump format
_ORDER_MAGIC = {
    b"\x80\x37\x12\x40": "z64",
    b"\x37\x80\x40\x12": "v64",
    b"\x40\x12\x37\x80": "n64",
}


def detect_rom_order(raw: bytes) -> str:
    return _ORDER_MAGIC.get(bytes(raw[:4]), "unknown")


def normalize_rom_be(raw: bytes) -> Tuple[bytes, str]:
    """Return the image in z64 (big-endian) order, plus the order it was stored in."""
    order = detect_rom_order(raw)
    if order not in ("v64", "n64"):
        return raw, order
    out = bytearray(raw)
    if order == "v64":
        even = len(out) & ~1
        out[0:even:2], out[1:even:2] = raw[1:even:2], raw[0:even:2]
    else:
        whole = len(out) & ~3
        for lane in range(4):
            out[lane:whole:4] = raw[3 - lane : whole : 4]
    return bytes(out), order


def read_rom(path: Union[str, pathlib.Path]) -> Tuple[bytes, str]:
    p = pathlib.Path(path)
    size = p.stat().st_size
    if size > MAX_ROM_SIZE:
        raise ValueError(f"{p}: 0x{size:X} bytes exceeds the 0x{MAX_ROM_SIZE:X} byte ROM limit")
    if size == 0:
        raise ValueError(f"{p}: empty file")
    return normalize_rom_be(p.read_bytes())


def _ascii(b: bytes) -> str:
    # octal escapes keep the emitted .ascii byte-exact
    out = []
    for v in b:
        if 0x20 <= v < 0x7F and v not in (0x22, 0x5C):
            out.append(chr(v))
        else:
            out.append(f"\\{v:03o}")
    return "".join(out)


# (name, offset, size, kind, comment)
HEADER_FIELDS: List[Tuple[str, int, int, str, str]] = [
    ("pi_bsd_domain1", 0x00, 4, "byte", "PI BSD Domain 1 register"),
    ("clock_rate", 0x04, 4, "word", "clock rate setting"),
    ("entry_point", 0x08, 4, "word", "entry point"),
    ("release", 0x0C, 4, "word", "release"),
    ("checksum1", 0x10, 4, "word", "checksum1"),
    ("checksum2", 0x14, 4, "word", "checksum2"),
    ("unknown_18", 0x18, 4, "word", "unknown"),
    ("unknown_1c", 0x1C, 4, "word", "unknown"),
    ("name", 0x20, 20, "ascii", "ROM name: 20 bytes"),
    ("unknown_34", 0x34, 4, "word", "unknown"),
    ("cartridge", 0x38, 4, "word", "cartridge"),
    ("cartridge_id", 0x3C, 2, "ascii", "cartridge ID"),
    ("country", 0x3E, 1, "ascii", "country"),
    ("version", 0x3F, 1, "byte", "version"),
]


def header_lines(data: bytes, start: int) -> List[str]:
    if start + HEADER_SIZE > len(data):
        raise ValueError(f"header at 0x{start:X} needs 0x{HEADER_SIZE:X} bytes, ROM has 0x{len(data):X}")
    lines: List[str] = []
    for _name, off, size, kind, comment in HEADER_FIELDS:
        raw = data[start + off : start + off + size]
        if kind == "word":
            text = f".word  0x{be32(raw, 0):08X}"
        elif kind == "ascii":
            text = f'.ascii "{_ascii(raw)}"'
        else:
            text = ".byte  " + hex_bytes(raw)
        lines.append(f"{text} # {comment}")
    return lines


def parse_header(data: bytes, start: int = 0) -> Dict[str, object]:
    if start + HEADER_SIZE > len(data):
        raise ValueError(f"header at 0x{start:X} needs 0x{HEADER_SIZE:X} bytes, ROM has 0x{len(data):X}")
    out: Dict[str, object] = {}
    for name, off, size, kind, _comment in HEADER_FIELDS:
        raw = data[start + off : start + off + size]
        if kind == "word":
            out[name] = f"0x{be32(raw, 0):08X}"
        elif kind == "ascii":
            out[name] = raw.decode("ascii", errors="ignore").rstrip(" \x00")
        elif size == 1:
            out[name] = raw[0]
        else:
            out[name] = [v for v in raw]
    return out
