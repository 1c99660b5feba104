from __future__ import annotations

import bisect
import dataclasses
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .addressing import AddressTranslator
from .config import RomConfig, SectionKind
from .rom import be32

logger = logging.getLogger(__name__)

JR_RA = 0x03E00008

# beq bne blez bgtz beql bnel blezl bgtzl
_BRANCH_OPS = frozenset((0x04, 0x05, 0x06, 0x07, 0x14, 0x15, 0x16, 0x17))
# bltz bgez bltzl bgezl bltzal bgezal bltzall bgezall
_REGIMM_BRANCH_RT = frozenset((0x00, 0x01, 0x02, 0x03, 0x10, 0x11, 0x12, 0x13))
_OP_REGIMM = 0x01
_OP_J = 0x02
_OP_JAL = 0x03
_OP_COP1 = 0x11
_COP1_BC = 0x08


@dataclasses.dataclass(frozen=True)
class Procedure:
    start: int
    end: int
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name if self.name else f"proc_{self.start:08X}"


class ProcedureIndex:
    """Procedures sorted by RAM start address."""

    def __init__(self, procedures: Iterable[Procedure] = ()):
        self.procedures: List[Procedure] = sorted(procedures, key=lambda p: p.start)
        self._starts = [p.start for p in self.procedures]

    def __len__(self) -> int:
        return len(self.procedures)

    def __iter__(self):
        return iter(self.procedures)

    def in_range(self, ram_start: int, ram_end: int) -> List[Procedure]:
        lo = bisect.bisect_left(self._starts, ram_start)
        hi = bisect.bisect_left(self._starts, ram_end)
        return self.procedures[lo:hi]

    def names(self) -> Dict[int, str]:
        return {p.start: p.label for p in self.procedures}


def _sign16(v: int) -> int:
    return v - 0x10000 if v & 0x8000 else v


def jump_target(word: int, pc: int) -> Optional[int]:
    op = word >> 26
    if op in (_OP_J, _OP_JAL):
        return ((pc + 4) & 0xF0000000) | ((word & 0x03FFFFFF) << 2)
    return None


def branch_target(word: int, pc: int) -> Optional[int]:
    op = word >> 26
    rs = (word >> 21) & 0x1F
    rt = (word >> 16) & 0x1F
    if (
        op in _BRANCH_OPS
        or (op == _OP_REGIMM and rt in _REGIMM_BRANCH_RT)
        or (op == _OP_COP1 and rs == _COP1_BC)
    ):
        return (pc + 4 + (_sign16(word & 0xFFFF) << 2)) & 0xFFFFFFFF
    return None


def scan_procedure_end(rom: bytes, translator: AddressTranslator, start: int, limit: int) -> int:
    """End of the procedure at start: past the delay slot of the first jr $ra no branch jumps over."""
    furthest = start
    pc = start
    while pc + 4 <= limit:
        word = be32(rom, translator.ram_to_rom(pc))
        target = branch_target(word, pc)
        if target is None and word >> 26 == _OP_J:
            target = jump_target(word, pc)
        if target is not None and furthest < target < limit:
            furthest = target
        if word == JR_RA and pc >= furthest:
            return min(pc + 8, limit)
        pc += 4
    return limit


def find_procedures(rom: bytes, config: RomConfig, translator: AddressTranslator) -> ProcedureIndex:
    """Seed procedures from configuration labels and jal targets, then size each one."""
    code: List[Tuple[int, int]] = [
        (translator.rom_to_ram(s.start), translator.rom_to_ram(s.end))
        for s in config.sections
        if s.kind is SectionKind.CODE
    ]

    def _code_range(addr: int) -> Optional[Tuple[int, int]]:
        for lo, hi in code:
            if lo <= addr < hi:
                return lo, hi
        return None

    starts: Dict[int, Optional[str]] = {}
    for lo, hi in code:
        starts.setdefault(lo, None)
        for pc in range(lo, hi - 3, 4):
            word = be32(rom, translator.ram_to_rom(pc))
            if word >> 26 != _OP_JAL:
                continue
            target = jump_target(word, pc)
            if target is not None and target & 3 == 0 and _code_range(target) is not None:
                starts.setdefault(target, None)
    for addr, name in config.labels.items():
        if _code_range(addr) is not None:
            starts[addr] = name

    ordered = sorted(starts)
    section_end = {a: (_code_range(a) or (a, a))[1] for a in ordered}
    # nested procedures do not bound their enclosing procedure
    bounds = [a for a in ordered if a not in config.exclude_procedures]
    procs: List[Procedure] = []
    for addr in ordered:
        limit = section_end[addr]
        i = bisect.bisect_right(bounds, addr)
        if i < len(bounds) and bounds[i] < limit:
            limit = bounds[i]
        end = scan_procedure_end(rom, translator, addr, limit)
        procs.append(Procedure(addr, end, starts[addr]))
    logger.info("found %d procedures in %d code sections", len(procs), len(code))
    return ProcedureIndex(procs)
