"""
Level script and behavior script decoding to assembler source.

A level script section holds two streams back to back:

- the load-command stream: ``[op, len, ...]`` records, terminated by the
  first record whose length byte is zero; load/copy/decompress commands carry
  ROM pointers which are resolved to section labels
- after 16-byte alignment, the geometry layout stream: fixed-length commands
  whose length depends only on the opcode (and, for 0x0A, the byte after it),
  nested with 0x04 (open) / 0x05 (close)

Behavior scripts are a flat stream of fixed-length commands.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Dict, List, Tuple

from .config import Section
from .rom import be32, hex_bytes
from .sections import SectionTable

logger = logging.getLogger(__name__)

# load and jump / copy uncompressed / decompress MIO0 / decompress MIO0 textures
LOAD_OPS = frozenset((0x00, 0x17, 0x18, 0x1A))
# load code into RAM
LOAD_CODE_OP = 0x16

GEO_OPEN = 0x04
GEO_CLOSE = 0x05

GEO_LENGTHS: Dict[int, int] = {}
for _op in (0x00, 0x01, 0x03, 0x04, 0x05, 0x09, 0x0B, 0x0C, 0x17, 0x20):
    GEO_LENGTHS[_op] = 4
for _op in (0x02, 0x0D, 0x0E, 0x14, 0x15, 0x16, 0x18, 0x19, 0x1D):
    GEO_LENGTHS[_op] = 8
for _op in (0x08, 0x11, 0x13, 0x1C):
    GEO_LENGTHS[_op] = 12
GEO_LENGTHS[0x10] = 16
GEO_LENGTHS[0x0F] = 20

BEHAVIOR_LENGTHS: Dict[int, int] = {}
for _op in (0x0C, 0x2A, 0x02, 0x23, 0x14, 0x2F, 0x04, 0x27):
    BEHAVIOR_LENGTHS[_op] = 8
for _op in (0x1C, 0x2B, 0x2C, 0x29):
    BEHAVIOR_LENGTHS[_op] = 12
BEHAVIOR_LENGTHS[0x30] = 20

DEFAULT_LENGTH = 4


def _align16(v: int) -> int:
    return (v + 0x0F) & ~0x0F


def _words(b: bytes) -> Tuple[str, bytes]:
    """Whole words as ", 0x<word>" groups, plus the bytes left over."""
    whole = len(b) - len(b) % 4
    text = "".join(f", 0x{b[i : i + 4].hex().upper()}" for i in range(0, whole, 4))
    return text, b[whole:]


def _load_command(data: bytes, a: int, n: int, table: SectionTable) -> List[str]:
    op = data[a]
    head = f".word 0x{data[a : a + 4].hex().upper()}"
    if op in LOAD_OPS and n >= 12:
        start = table.resolve_start(be32(data, a + 4))
        end = table.resolve_end(be32(data, a + 8))
        words, rest = _words(data[a + 12 : a + n])
        lines = [f"{head}, {start}, {end}{words}"]
        if rest:
            lines.append(".byte " + hex_bytes(rest))
        return lines
    if op == LOAD_CODE_OP and n >= 16:
        dst = table.resolve_start(be32(data, a + 4))
        start = table.resolve_start(be32(data, a + 8))
        end = table.resolve_end(be32(data, a + 12))
        return [f"{head}, {dst}, {start}, {end}"]
    return [".byte " + hex_bytes(data[a : a + n])]


def decode_load_commands(data: bytes, pos: int, end: int, table: SectionTable, label: str) -> Tuple[List[str], int]:
    """Decode the load-command stream from pos; return the lines and the cursor where it stopped."""
    lines: List[str] = []
    a = pos
    while a + 1 < end:
        n = data[a + 1]
        if n == 0:
            break
        if a + n > end:
            logger.warning(
                "%s: level command 0x%02X at 0x%06X declares 0x%X bytes, only 0x%X left in section",
                label, data[a], a, n, end - a,
            )
            lines.append(".byte " + hex_bytes(data[a:end]))
            a = end
            break
        lines.extend(_load_command(data, a, n, table))
        a += n
    return lines, a


def align_cursor(data: bytes, pos: int, end: int, label: str) -> Tuple[List[str], int]:
    if not pos & 0x0F:
        return [], pos
    aligned = min(_align16(pos), end)
    lines = [f"# begin {label} alignment 0x{pos:X}"]
    if aligned > pos:
        lines.append(".byte " + hex_bytes(data[pos:aligned]))
    return lines, aligned


def geo_command_length(data: bytes, pos: int) -> Tuple[int, bool]:
    """Length of the layout command at pos, and whether the opcode is a known one."""
    op = data[pos]
    if op == 0x0A:
        if pos + 1 < len(data) and data[pos + 1]:
            return 12, True
        return 8, True
    if op in GEO_LENGTHS:
        return GEO_LENGTHS[op], True
    return DEFAULT_LENGTH, False


@dataclasses.dataclass(frozen=True)
class GeoState:
    pos: int
    indent: int = 0


def geo_step(data: bytes, state: GeoState, end: int, label: str) -> Tuple[str, GeoState]:
    """Emit the layout command at state.pos and return the advanced state."""
    a = state.pos
    op = data[a]
    length, known = geo_command_length(data, a)
    if not known:
        logger.warning("%s: unknown geo layout opcode 0x%02X at 0x%06X, assuming %d bytes", label, op, a, length)
    if a + length > end:
        logger.warning(
            "%s: geo layout command 0x%02X at 0x%06X overruns section end 0x%06X", label, op, a, end
        )
        length = end - a
    indent = state.indent
    if op == GEO_CLOSE and indent > 1:
        indent -= 2
    line = ".byte " + " " * indent + hex_bytes(data[a : a + length])
    if op == GEO_OPEN:
        indent += 2
    return line, GeoState(a + length, indent)


def decode_geo_layout(data: bytes, pos: int, end: int, label: str) -> List[str]:
    lines: List[str] = []
    state = GeoState(pos)
    while state.pos < end:
        line, state = geo_step(data, state, end, label)
        lines.append(line)
    return lines


def decode_level_script(data: bytes, sec: Section, table: SectionTable) -> List[str]:
    label = sec.symbol
    lines, a = decode_load_commands(data, sec.start, sec.end, table, label)
    pad, a = align_cursor(data, a, sec.end, label)
    lines.extend(pad)
    lines.append(f"# begin {label} geo 0x{a:X}")
    lines.extend(decode_geo_layout(data, a, sec.end, label))
    return lines


def behavior_command_length(op: int) -> int:
    return BEHAVIOR_LENGTHS.get(op, DEFAULT_LENGTH)


def decode_behavior_script(data: bytes, sec: Section) -> List[str]:
    lines: List[str] = []
    a = sec.start
    while a < sec.end:
        length = behavior_command_length(data[a])
        if a + length > sec.end:
            logger.warning(
                "%s: behavior command 0x%02X at 0x%06X overruns section end 0x%06X",
                sec.symbol, data[a], a, sec.end,
            )
            length = sec.end - a
        lines.append(".byte " + hex_bytes(data[a : a + length]))
        a += length
    return lines
