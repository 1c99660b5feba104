"""
Split configuration: section map, procedure labels and per-ROM overrides.

Configs are YAML (or JSON by extension). A minimal example::

    name: Super Mario 64 (U)
    basename: sm64
    ram_offset: 0x80245000
    sections:
      - {start: 0x000000, end: 0x000040, type: header, label: header}
      - {start: 0x000040, end: 0x001000, type: bin, label: boot}
      - {start: 0x001000, end: 0x0E6430, type: asm}
      - start: 0x108A40
        end: 0x114750
        type: mio0
        label: seg2
        textures:
          - {offset: 0x0, width: 16, height: 16, format: ia, depth: 8}
    labels:
      0x80246000: main_entry
    exclude_procedures: [0x80327D58, 0x80327D68, 0x80327D10]
    inline_levels: [main_level_scripts]
"""

from __future__ import annotations

import dataclasses
import enum
import json
import pathlib
from typing import Any, Dict, FrozenSet, List, Optional, Union

import yaml

from .rom import HEADER_SIZE


class ConfigError(ValueError):
    exit_code = 2


class SectionKind(enum.Enum):
    HEADER = "header"
    RAW_BINARY = "bin"
    COMPRESSED_BLOB = "mio0"
    POINTER_PAIR = "ptr"
    CODE = "asm"
    LEVEL_SCRIPT = "level"
    BEHAVIOR_SCRIPT = "behavior"


class TextureFormat(enum.Enum):
    IA = "ia"
    RGBA = "rgba"
    SKYBOX = "skybox"


IA_DEPTHS = (1, 4, 8, 16)


@dataclasses.dataclass(frozen=True)
class TextureDescriptor:
    offset: int
    width: int
    height: int
    format: TextureFormat
    depth: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class Section:
    start: int
    end: int
    kind: SectionKind
    label: Optional[str] = None
    textures: Optional[List[TextureDescriptor]] = None
    reserve: bool = False

    @property
    def size(self) -> int:
        return self.end - self.start

    @property
    def symbol(self) -> str:
        """Label used in the listing; unlabeled sections get L<offset>."""
        return self.label if self.label else f"L{self.start:06X}"

    @property
    def file_stem(self) -> str:
        return self.label if self.label else f"{self.start:06X}"


@dataclasses.dataclass
class RomConfig:
    basename: str
    sections: List[Section]
    ram_offset: int = 0
    name: str = ""
    labels: Dict[int, str] = dataclasses.field(default_factory=dict)
    exclude_procedures: FrozenSet[int] = frozenset()
    inline_levels: FrozenSet[str] = frozenset()
    text_sections: FrozenSet[int] = frozenset()


def _load_raw(path: pathlib.Path) -> Dict[str, Any]:
    ext = path.suffix.lower()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    try:
        if ext == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"{path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping/object")
    return data


def _to_int(v: Any, what: str = "value") -> int:
    if isinstance(v, bool):
        raise ConfigError(f"{what}: expected int-like value, got bool")
    if isinstance(v, int):
        return int(v)
    if isinstance(v, str):
        try:
            return int(v, 0)
        except ValueError as e:
            raise ConfigError(f"{what}: not an integer: {v!r}") from e
    raise ConfigError(f"{what}: expected int-like value, got: {type(v).__name__}")


def _parse_texture(raw: Any, where: str) -> TextureDescriptor:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: texture entry must be a mapping")
    try:
        fmt = TextureFormat(str(raw.get("format", "")).lower())
    except ValueError as e:
        raise ConfigError(f"{where}: unknown texture format {raw.get('format')!r}") from e
    depth = raw.get("depth")
    return TextureDescriptor(
        offset=_to_int(raw.get("offset", 0), f"{where}.offset"),
        width=_to_int(raw.get("width"), f"{where}.width"),
        height=_to_int(raw.get("height"), f"{where}.height"),
        format=fmt,
        depth=None if depth is None else _to_int(depth, f"{where}.depth"),
    )


def _parse_section(raw: Any, idx: int) -> Section:
    # [start, end, type, label] lists are accepted as a shorthand
    if isinstance(raw, (list, tuple)):
        if len(raw) < 3:
            raise ConfigError(f"sections[{idx}]: expected [start, end, type, label?]")
        raw = {"start": raw[0], "end": raw[1], "type": raw[2], "label": raw[3] if len(raw) > 3 else None}
    if not isinstance(raw, dict):
        raise ConfigError(f"sections[{idx}]: entry must be a mapping or list")
    where = f"sections[{idx}]"
    stype = str(raw.get("type", "")).lower()
    try:
        kind = SectionKind(stype)
    except ValueError as e:
        raise ConfigError(f"{where}: unknown section type {stype!r}") from e
    label = raw.get("label")
    textures = raw.get("textures")
    parsed: Optional[List[TextureDescriptor]] = None
    if textures is not None:
        if not isinstance(textures, list):
            raise ConfigError(f"{where}: 'textures' must be a list")
        parsed = [_parse_texture(t, f"{where}.textures[{i}]") for i, t in enumerate(textures)]
    return Section(
        start=_to_int(raw.get("start"), f"{where}.start"),
        end=_to_int(raw.get("end"), f"{where}.end"),
        kind=kind,
        label=str(label) if label not in (None, "") else None,
        textures=parsed,
        reserve=bool(raw.get("reserve", False)),
    )


def _int_set(values: Any, what: str) -> FrozenSet[int]:
    if values is None:
        return frozenset()
    if not isinstance(values, list):
        raise ConfigError(f"'{what}' must be a list")
    return frozenset(_to_int(v, what) for v in values)


def parse_config(data: Dict[str, Any]) -> RomConfig:
    segs = data.get("sections", data.get("ranges"))
    if not isinstance(segs, list):
        raise ConfigError("Config 'sections' must be a list")
    labels_raw = data.get("labels") or {}
    if not isinstance(labels_raw, dict):
        raise ConfigError("Config 'labels' must be a mapping of RAM address to name")
    inline = data.get("inline_levels") or []
    if not isinstance(inline, list):
        raise ConfigError("'inline_levels' must be a list")
    basename = str(data.get("basename", "")).strip()
    if not basename:
        raise ConfigError("Config 'basename' is required")
    return RomConfig(
        basename=basename,
        sections=[_parse_section(s, i) for i, s in enumerate(segs)],
        ram_offset=_to_int(data.get("ram_offset", 0), "ram_offset"),
        name=str(data.get("name", "")),
        labels={_to_int(k, "labels"): str(v) for k, v in labels_raw.items()},
        exclude_procedures=_int_set(data.get("exclude_procedures"), "exclude_procedures"),
        inline_levels=frozenset(str(v) for v in inline),
        text_sections=_int_set(data.get("text_sections"), "text_sections"),
    )


def load_config(path: Union[str, pathlib.Path]) -> RomConfig:
    return parse_config(_load_raw(pathlib.Path(path)))


def validate_config(config: RomConfig, rom_length: int) -> None:
    """Check section ranges and texture descriptors; raise ConfigError on the first problem."""
    prev: Optional[Section] = None
    for sec in config.sections:
        name = sec.label or f"0x{sec.start:06X}"
        if sec.start >= sec.end:
            raise ConfigError(f"section {name}: start 0x{sec.start:X} >= end 0x{sec.end:X}")
        if sec.end > rom_length:
            raise ConfigError(f"section {name}: 0x{sec.start:X}-0x{sec.end:X} past end of ROM 0x{rom_length:X}")
        if prev is not None and sec.start < prev.end:
            raise ConfigError(
                f"section {name} at 0x{sec.start:X} overlaps previous section ending at 0x{prev.end:X}"
            )
        if sec.kind is SectionKind.HEADER and sec.size != HEADER_SIZE:
            raise ConfigError(f"section {name}: header must be 0x{HEADER_SIZE:X} bytes, got 0x{sec.size:X}")
        if sec.textures and sec.kind is not SectionKind.COMPRESSED_BLOB:
            raise ConfigError(f"section {name}: only mio0 sections may carry textures")
        for tex in sec.textures or ():
            _validate_texture(name, tex)
        prev = sec


def _validate_texture(name: str, tex: TextureDescriptor) -> None:
    if tex.width <= 0 or tex.height <= 0:
        raise ConfigError(f"section {name}: texture 0x{tex.offset:X} has non-positive size")
    if tex.format is TextureFormat.SKYBOX and (tex.width % 32 or tex.height % 32):
        raise ConfigError(
            f"section {name}: skybox 0x{tex.offset:X} size {tex.width}x{tex.height} is not a multiple of 32"
        )
    if tex.format is TextureFormat.IA and tex.depth not in IA_DEPTHS:
        raise ConfigError(f"section {name}: IA texture 0x{tex.offset:X} needs depth in {IA_DEPTHS}")
