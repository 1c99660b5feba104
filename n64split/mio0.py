"""
MIO0 decoding.

Layout: "MIO0" magic, then big-endian u32 decompressed size, u32 offset of the
back-reference stream and u32 offset of the literal stream (both relative to
the magic). A bitstream of layout flags follows the 16-byte header; a set bit
copies one literal byte, a clear bit copies 3..18 bytes from up to 4096 bytes
back.
"""

from __future__ import annotations

import dataclasses
from typing import Iterator, List

from .rom import be32

MAGIC = b"MIO0"
HEADER_SIZE = 0x10
MAX_DEST_SIZE = 0x4000000
MAX_STREAM_OFFSET = 0x1000000


@dataclasses.dataclass(frozen=True)
class Mio0Header:
    dest_size: int
    comp_offset: int
    uncomp_offset: int


def parse_header(data: bytes, off: int = 0) -> Mio0Header:
    """Header at off; raises ValueError unless it is a plausible MIO0 header."""
    if data[off : off + 4] != MAGIC:
        raise ValueError(f"no MIO0 magic at 0x{off:X}")
    if off + HEADER_SIZE > len(data):
        raise ValueError(f"truncated MIO0 header at 0x{off:X}")
    hdr = Mio0Header(be32(data, off + 4), be32(data, off + 8), be32(data, off + 12))
    if not 0 < hdr.dest_size <= MAX_DEST_SIZE:
        raise ValueError(f"MIO0 at 0x{off:X}: implausible size 0x{hdr.dest_size:X}")
    if not HEADER_SIZE <= hdr.comp_offset <= hdr.uncomp_offset < MAX_STREAM_OFFSET:
        raise ValueError(
            f"MIO0 at 0x{off:X}: bad stream offsets 0x{hdr.comp_offset:X}/0x{hdr.uncomp_offset:X}"
        )
    return hdr


def _layout_bits(data: bytes, pos: int) -> Iterator[bool]:
    # MSB first; the stream is unbounded, so running off the buffer is an error
    while True:
        if pos >= len(data):
            raise ValueError("MIO0 layout bits out of range")
        flags = data[pos]
        pos += 1
        for shift in range(7, -1, -1):
            yield bool((flags >> shift) & 1)


def decode(data: bytes, off: int = 0) -> bytes:
    hdr = parse_header(data, off)
    refs = off + hdr.comp_offset
    literals = off + hdr.uncomp_offset
    out = bytearray()
    bits = _layout_bits(data, off + HEADER_SIZE)
    while len(out) < hdr.dest_size:
        if next(bits):
            if literals >= len(data):
                raise ValueError("MIO0 literal stream out of range")
            out.append(data[literals])
            literals += 1
            continue
        if refs + 2 > len(data):
            raise ValueError("MIO0 back-reference stream out of range")
        code = (data[refs] << 8) | data[refs + 1]
        refs += 2
        length = (code >> 12) + 3
        src = len(out) - ((code & 0x0FFF) + 1)
        if src < 0:
            raise ValueError(f"MIO0 back-reference before start of output at 0x{len(out):X}")
        # byte by byte: the copy may overlap the bytes it produces
        for i in range(min(length, hdr.dest_size - len(out))):
            out.append(out[src + i])
    return bytes(out)


def find_headers(data: bytes) -> List[int]:
    offs: List[int] = []
    i = data.find(MAGIC)
    while i >= 0:
        try:
            parse_header(data, i)
        except ValueError:
            pass
        else:
            offs.append(i)
        i = data.find(MAGIC, i + 1)
    return offs
