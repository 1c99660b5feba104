from conftest import RAM_OFFSET, be
from n64split.addressing import AddressTranslator
from n64split.mips import DisasmContext, Disassembler
from n64split.procedures import JR_RA, Procedure


def _rom(words):
    rom = bytearray(0x2000)
    code = be(*words)
    rom[0x1000 : 0x1000 + len(code)] = code
    return bytes(rom)


def test_disassemble_procedure_listing():
    rom = _rom([0x10000002, 0, 0, JR_RA, 0])
    proc = Procedure(0x80001000, 0x80001014, "func")
    text = Disassembler().disassemble(rom, proc, DisasmContext(AddressTranslator(RAM_OFFSET)))
    lines = text.splitlines()
    assert "# 0x001000-0x001014 [14]" in lines
    assert ".global func" in lines
    assert "func:" in lines
    assert ".L8000100C:" in lines
    assert text.count(".L8000100C") == 2
    assert any("jr" in line and "/* 00100C 8000100C 03E00008 */" in line for line in lines)
    assert sum("nop" in line for line in lines) == 3


def test_jal_target_uses_known_name():
    rom = _rom([0x0C000404, 0, JR_RA, 0])
    proc = Procedure(0x80001000, 0x80001010)
    ctx = DisasmContext(AddressTranslator(RAM_OFFSET), {0x80001010: "helper"})
    text = Disassembler().disassemble(rom, proc, ctx)
    assert "proc_80001000:" in text
    assert "helper" in text.splitlines()[4]
