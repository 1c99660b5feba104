"""
Config-driven ROM decomposition into an assembler listing plus binary assets.

The ROM is walked in declared section order. Bytes between sections are
written out as gap files, every section is emitted according to its kind, and
compressed blobs, level scripts and behavior scripts are collected into a
trailing ``.mio0`` section with a generated Makefile fragment.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import json
import logging
import pathlib
from typing import Any, Dict, List, Optional, Sequence, TextIO, Tuple

from . import graphics, mio0
from .addressing import AddressTranslator
from .config import RomConfig, Section, SectionKind
from .mips import DisasmContext, Disassembler
from .procedures import ProcedureIndex, find_procedures
from .rom import be32, header_lines, hex_bytes
from .scripts import decode_behavior_script, decode_level_script
from .sections import SectionTable

logger = logging.getLogger(__name__)

GEN_DIR = "gen"

ASM_HEADER = (
    ".set noat      # allow manual use of $at\n"
    ".set noreorder # don't insert nops after branches\n"
    "\n"
    ".global _start\n"
    "\n"
    "_start:\n"
)

VERBATIM_KINDS = frozenset(("gap", "bin", "mio0"))


class SplitError(RuntimeError):
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


@dataclasses.dataclass(frozen=True)
class OutputLayout:
    """Output tree; paths written into generated sources are relative to root."""

    root: pathlib.Path
    gen_name: str = GEN_DIR

    @property
    def gen_dir(self) -> pathlib.Path:
        return self.root / self.gen_name

    @property
    def bin_dir(self) -> pathlib.Path:
        return self.gen_dir / "bin"

    @property
    def mio0_dir(self) -> pathlib.Path:
        return self.gen_dir / "bin"

    @property
    def texture_dir(self) -> pathlib.Path:
        return self.gen_dir / "textures"

    @property
    def level_dir(self) -> pathlib.Path:
        return self.gen_dir / "levels"

    @property
    def makefile(self) -> pathlib.Path:
        return self.gen_dir / "Makefile.gen"

    def listing(self, basename: str) -> pathlib.Path:
        return self.gen_dir / f"{basename}.s"

    def ref(self, path: pathlib.Path) -> str:
        return path.relative_to(self.root).as_posix()

    def create(self) -> None:
        for d in (self.gen_dir, self.bin_dir, self.mio0_dir, self.texture_dir, self.level_dir):
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise SplitError(f"cannot create output directory {d}: {e}", exit_code=3) from e


@dataclasses.dataclass
class Artifact:
    start: int
    end: int
    kind: str
    path: Optional[pathlib.Path] = None

    @property
    def verbatim(self) -> bool:
        return self.kind in VERBATIM_KINDS


@dataclasses.dataclass
class BlobResult:
    section: Section
    mio0_path: pathlib.Path
    bin_path: Optional[pathlib.Path]
    textures: List[pathlib.Path] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class SplitResult:
    listing: pathlib.Path
    makefile: pathlib.Path
    artifacts: List[Artifact]
    blobs: List[BlobResult]
    levels: List[pathlib.Path]

    @property
    def gaps(self) -> List[Artifact]:
        return [a for a in self.artifacts if a.kind == "gap"]

    def physical_ranges(self) -> List[Artifact]:
        return [a for a in self.artifacts if a.verbatim]

    def to_report(self) -> Dict[str, Any]:
        return {
            "listing": str(self.listing),
            "makefile": str(self.makefile),
            "artifacts": [
                {
                    "kind": a.kind,
                    "start": f"0x{a.start:06X}",
                    "end": f"0x{a.end:06X}",
                    "path": str(a.path) if a.path else None,
                }
                for a in self.artifacts
            ],
            "blobs": [
                {
                    "label": b.section.symbol,
                    "mio0": str(b.mio0_path),
                    "bin": str(b.bin_path) if b.bin_path else None,
                    "textures": [str(t) for t in b.textures],
                }
                for b in self.blobs
            ],
            "levels": [str(p) for p in self.levels],
            "counts": {
                "sections": len([a for a in self.artifacts if a.kind != "gap"]),
                "gaps": len(self.gaps),
                "blobs": len(self.blobs),
                "textures": sum(len(b.textures) for b in self.blobs),
                "levels": len(self.levels),
            },
        }


def _write_file(path: pathlib.Path, data: bytes) -> None:
    try:
        path.write_bytes(data)
    except OSError as e:
        raise SplitError(f"cannot write {path}: {e}", exit_code=3) from e


def find_gaps(sections: Sequence[Section], rom_length: Optional[int] = None) -> List[Tuple[int, int]]:
    """Undeclared ranges between sections (and after the last one when rom_length is given)."""
    gaps: List[Tuple[int, int]] = []
    last_end = 0
    for sec in sections:
        if sec.start < last_end:
            raise SplitError(
                f"section {sec.symbol} at 0x{sec.start:X} overlaps previous section ending at 0x{last_end:X}",
                exit_code=4,
            )
        if sec.start > last_end:
            gaps.append((last_end, sec.start))
        last_end = sec.end
    if rom_length is not None and rom_length > last_end:
        gaps.append((last_end, rom_length))
    return gaps


def _unknown_block(rom: bytes, translator: AddressTranslator, ram_start: int, ram_end: int) -> str:
    rom_start = translator.ram_to_rom(ram_start)
    rom_end = translator.ram_to_rom(ram_end)
    out = [
        f"\n# unknown assembly section {ram_start:X}-{ram_end:X} "
        f"({rom_start:06X}-{rom_end:06X}) [{ram_end - ram_start:X}]"
    ]
    words = (rom_end - rom_start) // 4
    for i in range(0, words, 4):
        row = [f"0x{be32(rom, rom_start + (i + j) * 4):08x}" for j in range(min(4, words - i))]
        out.append(" .word " + ", ".join(row))
    tail = rom[rom_start + words * 4 : rom_end]
    if tail:
        out.append(".byte " + hex_bytes(tail))
    out.append("# end unknown section\n")
    return "\n".join(out)


def disassemble_code_section(
    rom: bytes,
    sec: Section,
    procs: ProcedureIndex,
    translator: AddressTranslator,
    disassembler: Disassembler,
    context: DisasmContext,
    exclude: Sequence[int] = (),
) -> List[str]:
    """Emit every procedure starting inside sec, dumping uncovered ranges as unknown words."""
    ram_start = translator.rom_to_ram(sec.start)
    ram_end = translator.rom_to_ram(sec.end)
    chunks: List[str] = []
    last_end = ram_start
    for proc in procs.in_range(ram_start, ram_end):
        if proc.start > last_end:
            chunks.append(_unknown_block(rom, translator, last_end, proc.start))
        elif proc.start < last_end:
            logger.warning(
                "%s: procedure 0x%08X starts before previous procedure end 0x%08X",
                sec.symbol, proc.start, last_end,
            )
        if proc.start not in exclude:
            chunks.append(disassembler.disassemble(rom, proc, context))
        last_end = max(last_end, proc.end)
        if last_end >= ram_end:
            break
    if last_end < ram_end:
        chunks.append(_unknown_block(rom, translator, last_end, ram_end))
    return chunks


def _blob_paths(layout: OutputLayout, sec: Section) -> Tuple[pathlib.Path, pathlib.Path]:
    return layout.mio0_dir / f"{sec.file_stem}.mio0", layout.mio0_dir / f"{sec.file_stem}.bin"


def extract_blob(rom: bytes, sec: Section, layout: OutputLayout) -> BlobResult:
    """Write one MIO0 section, its decompressed data and its textures. Owns only its own files."""
    mio0_path, bin_path = _blob_paths(layout, sec)
    _write_file(mio0_path, rom[sec.start : sec.end])
    try:
        raw = mio0.decode(rom[sec.start : sec.end])
    except ValueError as e:
        logger.warning("%s: MIO0 decode failed at 0x%06X: %s", sec.symbol, sec.start, e)
        return BlobResult(sec, mio0_path, None)
    _write_file(bin_path, raw)

    result = BlobResult(sec, mio0_path, bin_path)
    if sec.textures:
        tex_dir = layout.texture_dir / sec.file_stem
        logger.info("Extracting textures from %s", sec.symbol)
        for tex in sec.textures:
            out_path = tex_dir / graphics.texture_filename(tex)
            try:
                pixels = graphics.decode_texture(raw, tex)
            except ValueError as e:
                logger.warning("%s: skipping texture 0x%05X: %s", sec.symbol, tex.offset, e)
                continue
            graphics.save_png(out_path, pixels)
            result.textures.append(out_path)
    # touch bin, then mio0 so make does not rebuild them right away
    bin_path.touch()
    mio0_path.touch()
    return result


class _Splitter:
    def __init__(
        self,
        rom: bytes,
        config: RomConfig,
        layout: OutputLayout,
        procs: ProcedureIndex,
        disassembler: Optional[Disassembler],
        jobs: int,
    ):
        self.rom = rom
        self.config = config
        self.layout = layout
        self.procs = procs
        self.table = SectionTable(config.sections)
        self.translator = AddressTranslator(config.ram_offset)
        self._disassembler = disassembler
        self.jobs = max(1, jobs)
        self.artifacts: List[Artifact] = []
        self.levels: List[pathlib.Path] = []

    @property
    def disassembler(self) -> Disassembler:
        if self._disassembler is None:
            self._disassembler = Disassembler()
        return self._disassembler

    def _is_inline_level(self, sec: Section) -> bool:
        return sec.label is not None and sec.label in self.config.inline_levels

    def _gap(self, out: TextIO, start: int, end: int) -> None:
        path = self.layout.bin_dir / f"{self.config.basename}.{start:06X}.bin"
        _write_file(path, self.rom[start:end])
        out.write(f"L{start:06X}:\n")
        out.write(f'.incbin "{self.layout.ref(path)}"\n')
        self.artifacts.append(Artifact(start, end, "gap", path))

    def _space(self, out: TextIO, sec: Section) -> None:
        out.write(f".space 0x{sec.size:05x}, 0x01 # {sec.symbol}\n")

    def _pointer_pairs(self, out: TextIO, sec: Section) -> None:
        a = sec.start
        while a + 8 <= sec.end:
            start = self.table.resolve_start(be32(self.rom, a))
            end = self.table.resolve_end(be32(self.rom, a + 4))
            out.write(f".word {start}, {end}\n")
            a += 8
        if a < sec.end:
            out.write(".byte " + hex_bytes(self.rom[a : sec.end]) + "\n")

    def _code(self, out: TextIO, sec: Section) -> None:
        if sec.start in self.config.text_sections:
            out.write(f'\n.section .text0x{self.translator.rom_to_ram(sec.start):08X}, "ax"\n\n')
        context = DisasmContext(self.translator, self.procs.names())
        chunks = disassemble_code_section(
            self.rom,
            sec,
            self.procs,
            self.translator,
            self.disassembler,
            context,
            sorted(self.config.exclude_procedures),
        )
        for chunk in chunks:
            out.write(chunk)

    def _global_block(self, out: TextIO, sec: Section, lines: List[str]) -> None:
        out.write(f"\n.global {sec.symbol}\n")
        out.write(f"\n.global {sec.symbol}_end\n")
        out.write(f"{sec.symbol}: # 0x{sec.start:X}\n")
        for line in lines:
            out.write(line + "\n")
        out.write(f"{sec.symbol}_end:\n")

    def _section(self, out: TextIO, sec: Section) -> None:
        kind = sec.kind
        if sec.reserve:
            self._space(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "reserve"))
            return
        if kind is SectionKind.HEADER:
            out.write(".section .header\n")
            for line in header_lines(self.rom, sec.start):
                out.write(line + "\n")
            out.write("\n.text\n\n")
            self.artifacts.append(Artifact(sec.start, sec.end, "header"))
        elif kind is SectionKind.RAW_BINARY:
            if sec.label:
                path = self.layout.bin_dir / f"{self.config.basename}.{sec.start:06X}.{sec.label}.bin"
            else:
                path = self.layout.bin_dir / f"{self.config.basename}.{sec.start:06X}.bin"
            _write_file(path, self.rom[sec.start : sec.end])
            if sec.label != "header":
                out.write(f"{sec.symbol}:\n")
                out.write(f'.incbin "{self.layout.ref(path)}"\n')
                out.write(f"{sec.symbol}_end:\n")
            self.artifacts.append(Artifact(sec.start, sec.end, "bin", path))
        elif kind is SectionKind.COMPRESSED_BLOB:
            self._space(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "mio0", _blob_paths(self.layout, sec)[0]))
        elif kind is SectionKind.POINTER_PAIR:
            self._pointer_pairs(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "ptr"))
        elif kind is SectionKind.CODE:
            self._code(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "asm"))
        elif kind is SectionKind.LEVEL_SCRIPT:
            if self._is_inline_level(sec):
                self._global_block(out, sec, decode_level_script(self.rom, sec, self.table))
            else:
                self._space(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "level"))
        elif kind is SectionKind.BEHAVIOR_SCRIPT:
            # emitted with the other relocatable data below
            self._space(out, sec)
            self.artifacts.append(Artifact(sec.start, sec.end, "behavior"))
        else:
            raise SplitError(f"don't know what to do with section type {kind!r}")

    def _main_pass(self, out: TextIO) -> None:
        length = len(self.rom)
        for sec in self.table:
            if sec.start >= length or sec.end > length:
                raise SplitError(
                    f"section past end: 0x{sec.start:X}, 0x{sec.end:X} ({sec.label or ''}) > 0x{length:X}",
                    exit_code=4,
                )
        # gap end -> gap start; a gap always ends where a section starts or at the ROM end
        gaps = {end: start for start, end in find_gaps(self.table.sections, length)}
        for sec in self.table:
            if sec.start in gaps:
                self._gap(out, gaps.pop(sec.start), sec.start)
            self._section(out, sec)
        if length in gaps:
            self._gap(out, gaps.pop(length), length)

    def _extract_blobs(self) -> Dict[int, BlobResult]:
        blobs = [
            s for s in self.table if s.kind is SectionKind.COMPRESSED_BLOB and not s.reserve
        ]

        def _task(sec: Section) -> BlobResult:
            return extract_blob(self.rom, sec, self.layout)

        if self.jobs > 1 and len(blobs) > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.jobs) as ex:
                results = list(ex.map(_task, blobs))
        else:
            results = [_task(s) for s in blobs]
        return {r.section.start: r for r in results}

    def _data_pass(self, out: TextIO) -> Tuple[List[BlobResult], List[str], List[str], List[str]]:
        blob_results = self._extract_blobs()
        ordered: List[BlobResult] = []
        rules: List[str] = []
        mio0_files: List[str] = []
        level_files: List[str] = []
        out.write("\n.section .mio0\n")
        for sec in self.table:
            if sec.reserve:
                continue
            if sec.kind is SectionKind.COMPRESSED_BLOB:
                res = blob_results[sec.start]
                ordered.append(res)
                out.write(".align 4, 0x01\n")
                out.write(f".global {sec.symbol}\n")
                out.write(f"{sec.symbol}:\n")
                out.write(f'.incbin "{self.layout.ref(res.mio0_path)}"\n')
                out.write(f"{sec.symbol}_end:\n")
                mio0_files.append(res.mio0_path.name)
                if sec.textures and res.bin_path is not None:
                    deps = "".join(f" {self.layout.ref(t)}" for t in res.textures)
                    rules.append(f"$(MIO0_DIR)/{res.bin_path.name}:{deps}\n\t$(N64GRAPHICS) $@ $^\n\n")
            elif sec.kind is SectionKind.LEVEL_SCRIPT and not self._is_inline_level(sec):
                path = self.layout.level_dir / f"{sec.file_stem}.s"
                lines = decode_level_script(self.rom, sec, self.table)
                try:
                    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
                except OSError as e:
                    raise SplitError(f"cannot write {path}: {e}", exit_code=3) from e
                self.levels.append(path)
                out.write(".align 4, 0x01\n")
                out.write(f".global {sec.symbol}\n")
                out.write(f"{sec.symbol}:\n")
                out.write(f'.include "{self.layout.ref(path)}"\n')
                out.write(f"{sec.symbol}_end:\n")
                level_files.append(path.name)
            elif sec.kind is SectionKind.BEHAVIOR_SCRIPT:
                self._global_block(out, sec, decode_behavior_script(self.rom, sec))
        return ordered, rules, mio0_files, level_files

    def _write_makefile(self, rules: List[str], mio0_files: List[str], level_files: List[str]) -> None:
        lay = self.layout
        parts = [
            f"MIO0_DIR = {lay.ref(lay.mio0_dir)}\n\n",
            f"TEXTURE_DIR = {lay.ref(lay.texture_dir)}\n\n",
            f"LEVEL_DIR = {lay.ref(lay.level_dir)}\n\n",
        ]
        parts.extend(rules)
        parts.append("\n\nMIO0_FILES =" + "".join(f" \\\n$(MIO0_DIR)/{f}" for f in mio0_files))
        parts.append("\n\nLEVEL_FILES =" + "".join(f" \\\n$(LEVEL_DIR)/{f}" for f in level_files))
        try:
            lay.makefile.write_text("".join(parts), encoding="utf-8")
        except OSError as e:
            raise SplitError(f"cannot write {lay.makefile}: {e}", exit_code=3) from e

    def run(self) -> SplitResult:
        self.layout.create()
        listing = self.layout.listing(self.config.basename)
        try:
            out = listing.open("w", encoding="utf-8")
        except OSError as e:
            raise SplitError(f"Error opening {listing}: {e}", exit_code=3) from e
        with out:
            out.write(ASM_HEADER)
            self._main_pass(out)
            blobs, rules, mio0_files, level_files = self._data_pass(out)
        self._write_makefile(rules, mio0_files, level_files)
        return SplitResult(listing, self.layout.makefile, self.artifacts, blobs, self.levels)


def split_rom(
    rom: bytes,
    config: RomConfig,
    root: pathlib.Path,
    procs: Optional[ProcedureIndex] = None,
    disassembler: Optional[Disassembler] = None,
    jobs: int = 1,
    gen_name: str = GEN_DIR,
) -> SplitResult:
    """Decompose rom per config into root/gen_name and write a manifest.json there."""
    layout = OutputLayout(pathlib.Path(root), gen_name)
    if procs is None:
        procs = find_procedures(rom, config, AddressTranslator(config.ram_offset))
    result = _Splitter(rom, config, layout, procs, disassembler, jobs).run()
    manifest = layout.gen_dir / "manifest.json"
    _write_file(manifest, json.dumps(result.to_report(), indent=2).encode("utf-8"))
    logger.info(
        "split %d sections, %d gaps, %d blobs, %d level scripts",
        len(config.sections), len(result.gaps), len(result.blobs), len(result.levels),
    )
    return result
