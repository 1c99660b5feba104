from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class AddressTranslator:
    """Affine ROM offset <-> RAM address mapping (ram = rom + ram_offset)."""

    ram_offset: int

    def rom_to_ram(self, offset: int) -> int:
        return (offset + self.ram_offset) & 0xFFFFFFFF

    def ram_to_rom(self, address: int) -> int:
        return (address - self.ram_offset) & 0xFFFFFFFF
