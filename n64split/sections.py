from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence

from .config import Section


class SectionTable:
    """Declared sections in address order, with exact start/end lookup.

    Lookups are exact matches: a pointer landing inside a section (rather than
    on its first byte, or one past its last byte for end lookups) does not
    resolve, and label resolution falls back to the raw address.
    """

    def __init__(self, sections: Sequence[Section]):
        self.sections: List[Section] = list(sections)
        self._by_start: Dict[int, int] = {}
        self._by_end: Dict[int, int] = {}
        for i, sec in enumerate(self.sections):
            self._by_start.setdefault(sec.start, i)
            self._by_end.setdefault(sec.end, i)

    def __len__(self) -> int:
        return len(self.sections)

    def __iter__(self) -> Iterator[Section]:
        return iter(self.sections)

    def __getitem__(self, idx: int) -> Section:
        return self.sections[idx]

    def lookup_start(self, address: int) -> Optional[int]:
        return self._by_start.get(address)

    def lookup_end(self, address: int) -> Optional[int]:
        return self._by_end.get(address)

    def resolve_start(self, address: int) -> str:
        i = self.lookup_start(address)
        if i is None:
            return f"0x{address:08X}"
        return self.sections[i].symbol

    def resolve_end(self, address: int) -> str:
        i = self.lookup_end(address)
        if i is None:
            return f"0x{address:08X}"
        return f"{self.sections[i].symbol}_end"
