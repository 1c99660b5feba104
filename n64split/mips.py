"""
Procedure disassembly for the VR4300 (MIPS III, big-endian) via capstone.

Output is GNU as source under ``.set noreorder``: branch targets inside the
procedure become local ``.L<addr>`` labels, jal targets become procedure names
where known, and words capstone cannot decode are emitted as ``.word``.
"""

from __future__ import annotations

import dataclasses
from typing import Dict, List, Set

from capstone import CS_ARCH_MIPS, CS_MODE_BIG_ENDIAN, CS_MODE_MIPS64, Cs

from .addressing import AddressTranslator
from .procedures import Procedure, branch_target, jump_target
from .rom import be32, hex_bytes


@dataclasses.dataclass
class DisasmContext:
    translator: AddressTranslator
    names: Dict[int, str] = dataclasses.field(default_factory=dict)


class Disassembler:
    def __init__(self) -> None:
        self._md = Cs(CS_ARCH_MIPS, CS_MODE_MIPS64 | CS_MODE_BIG_ENDIAN)

    def _text(self, word: int, pc: int) -> str:
        insn = next(self._md.disasm(word.to_bytes(4, "big"), pc, 1), None)
        if insn is None:
            return f".word 0x{word:08X}"
        if not insn.op_str:
            return insn.mnemonic
        return f"{insn.mnemonic:<10} {insn.op_str}"

    def disassemble(self, rom: bytes, proc: Procedure, context: DisasmContext) -> str:
        rom_start = context.translator.ram_to_rom(proc.start)
        size = proc.end - proc.start
        count = size // 4
        words = [be32(rom, rom_start + i * 4) for i in range(count)]

        local: Set[int] = set()
        for i, word in enumerate(words):
            target = branch_target(word, proc.start + i * 4)
            if target is None and word >> 26 == 0x02:
                target = jump_target(word, proc.start + i * 4)
            if target is not None and proc.start <= target < proc.end:
                local.add(target)

        lines: List[str] = [
            "",
            f"# 0x{rom_start:06X}-0x{rom_start + size:06X} [{size:X}]",
            f".global {proc.label}",
            f"{proc.label}:",
        ]
        for i, word in enumerate(words):
            pc = proc.start + i * 4
            if pc in local:
                lines.append(f".L{pc:08X}:")
            text = self._text(word, pc)
            target = branch_target(word, pc)
            if target is None:
                target = jump_target(word, pc)
            if target is not None:
                name = f".L{target:08X}" if target in local else context.names.get(target)
                if name is not None and not text.startswith(".word"):
                    head, _, _last = text.rpartition(", ")
                    if head:
                        text = f"{head}, {name}"
                    else:
                        text = f"{text.split()[0]:<10} {name}"
            lines.append(f"  /* {rom_start + i * 4:06X} {pc:08X} {word:08X} */  {text}")
        tail = rom[rom_start + count * 4 : rom_start + size]
        if tail:
            lines.append(".byte " + hex_bytes(tail))
        return "\n".join(lines) + "\n"
