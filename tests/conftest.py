import struct

import pytest

from n64split.config import RomConfig, Section, SectionKind, TextureDescriptor, TextureFormat

RAM_OFFSET = 0x80000000
JR_RA = struct.pack(">I", 0x03E00008)


def be(*words):
    return b"".join(struct.pack(">I", w) for w in words)


def mio0_stream():
    """Compresses b"ABCABCAB": three literals then one 5-byte back-reference."""
    return b"MIO0" + be(8, 0x11, 0x13) + b"\xE0" + b"\x20\x02" + b"ABC"


def build_rom():
    rom = bytearray(0x2000)
    rom[0:4] = b"\x80\x37\x12\x40"
    rom[0x08:0x0C] = be(0x80000400)
    rom[0x20:0x34] = b"TEST ROM".ljust(20, b" ")
    rom[0x3B:0x3F] = b"NTEE"
    for i in range(0x40, 0x100):
        rom[i] = i & 0xFF
    for i in range(0x100, 0x200):
        rom[i] = 0xAA
    rom[0x208:0x20C] = JR_RA
    rom[0x240:0x248] = be(0x400, 0x460)
    rom[0x300] = 0x55
    stream = mio0_stream()
    rom[0x400 : 0x400 + len(stream)] = stream
    rom[0x440:0x450] = bytes([0x04, 0, 0, 0, 0x03, 0, 0, 0, 0x05, 0, 0, 0, 0x01, 0, 0, 0])
    rom[0x460:0x470] = bytes([0x0C, 0, 0, 0, 0, 0, 0, 1, 0x00, 0, 0, 0, 0x00, 0, 0, 2])
    rom[0x1FFF] = 0x99
    return bytes(rom)


def build_config(**overrides):
    sections = [
        Section(0x000, 0x040, SectionKind.HEADER, "header"),
        Section(0x040, 0x100, SectionKind.RAW_BINARY, "boot"),
        Section(0x200, 0x240, SectionKind.CODE),
        Section(0x240, 0x248, SectionKind.POINTER_PAIR, "level_ptrs"),
        Section(
            0x400,
            0x440,
            SectionKind.COMPRESSED_BLOB,
            "blob",
            textures=[
                TextureDescriptor(0, 2, 2, TextureFormat.IA, 8),
                TextureDescriptor(0, 16, 16, TextureFormat.RGBA),
            ],
        ),
        Section(0x440, 0x460, SectionKind.LEVEL_SCRIPT, "lvl"),
        Section(0x460, 0x470, SectionKind.BEHAVIOR_SCRIPT, "beh"),
    ]
    kw = dict(basename="test", sections=sections, ram_offset=RAM_OFFSET, name="Test ROM")
    kw.update(overrides)
    return RomConfig(**kw)


class FakeDisassembler:
    def __init__(self):
        self.calls = []

    def disassemble(self, rom, proc, context):
        self.calls.append(proc.start)
        return f"\n<{proc.label}>\n"


@pytest.fixture
def rom():
    return build_rom()


@pytest.fixture
def config():
    return build_config()
