import json

import pytest

from n64split.config import (
    ConfigError,
    RomConfig,
    Section,
    SectionKind,
    TextureDescriptor,
    TextureFormat,
    load_config,
    parse_config,
    validate_config,
)


def test_parse_config_accepts_hex_strings_and_list_shorthand():
    cfg = parse_config(
        {
            "basename": "sm64",
            "ram_offset": "0x80245000",
            "sections": [
                {"start": "0x0", "end": "0x40", "type": "header", "label": "header"},
                ["0x40", "0x1000", "bin", "boot"],
                [0x1000, 0x2000, "ASM"],
            ],
            "labels": {"0x80246000": "main_entry"},
            "exclude_procedures": ["0x80327D58"],
            "inline_levels": ["main_level_scripts"],
        }
    )
    assert cfg.ram_offset == 0x80245000
    assert [s.kind for s in cfg.sections] == [SectionKind.HEADER, SectionKind.RAW_BINARY, SectionKind.CODE]
    assert cfg.sections[1].label == "boot"
    assert cfg.sections[2].label is None
    assert cfg.labels == {0x80246000: "main_entry"}
    assert 0x80327D58 in cfg.exclude_procedures
    assert "main_level_scripts" in cfg.inline_levels


def test_parse_config_textures():
    cfg = parse_config(
        {
            "basename": "x",
            "sections": [
                {
                    "start": 0,
                    "end": 0x100,
                    "type": "mio0",
                    "textures": [{"offset": "0x20", "width": 32, "height": 32, "format": "skybox"}],
                }
            ],
        }
    )
    tex = cfg.sections[0].textures[0]
    assert tex == TextureDescriptor(0x20, 32, 32, TextureFormat.SKYBOX)


@pytest.mark.parametrize(
    "data",
    [
        {"sections": []},
        {"basename": "x", "sections": "nope"},
        {"basename": "x", "sections": [{"start": 0, "end": 4, "type": "weird"}]},
        {"basename": "x", "sections": [{"start": True, "end": 4, "type": "bin"}]},
        {"basename": "x", "sections": [{"start": "zz", "end": 4, "type": "bin"}]},
    ],
)
def test_parse_config_rejects_malformed(data):
    with pytest.raises(ConfigError):
        parse_config(data)


def test_load_config_yaml_and_json(tmp_path):
    y = tmp_path / "rom.yaml"
    y.write_text("basename: sm64\nram_offset: 0x80245000\nsections:\n  - [0x0, 0x40, header, header]\n", encoding="utf-8")
    j = tmp_path / "rom.json"
    j.write_text(json.dumps({"basename": "sm64", "sections": [[0, 64, "header", "header"]]}), encoding="utf-8")
    assert load_config(y).sections == load_config(j).sections
    assert load_config(y).ram_offset == 0x80245000


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError) as exc:
        load_config(tmp_path / "missing.yaml")
    assert exc.value.exit_code == 2


def _cfg(*sections):
    return RomConfig(basename="x", sections=list(sections))


def test_validate_config_ok():
    validate_config(
        _cfg(Section(0, 0x40, SectionKind.HEADER), Section(0x40, 0x80, SectionKind.RAW_BINARY)),
        0x80,
    )


@pytest.mark.parametrize(
    "sections",
    [
        [Section(0x40, 0x40, SectionKind.RAW_BINARY)],
        [Section(0x40, 0x81, SectionKind.RAW_BINARY)],
        [Section(0x0, 0x40, SectionKind.RAW_BINARY), Section(0x20, 0x60, SectionKind.RAW_BINARY)],
        [Section(0, 0x40, SectionKind.RAW_BINARY, textures=[TextureDescriptor(0, 8, 8, TextureFormat.RGBA)])],
        [Section(0, 0x40, SectionKind.COMPRESSED_BLOB, textures=[TextureDescriptor(0, 48, 32, TextureFormat.SKYBOX)])],
        [Section(0, 0x40, SectionKind.COMPRESSED_BLOB, textures=[TextureDescriptor(0, 8, 8, TextureFormat.IA, 2)])],
        [Section(0, 0x40, SectionKind.COMPRESSED_BLOB, textures=[TextureDescriptor(0, 8, 8, TextureFormat.IA)])],
    ],
)
def test_validate_config_rejects(sections):
    with pytest.raises(ConfigError):
        validate_config(_cfg(*sections), 0x80)


def test_validate_config_rejects_short_header():
    cfg = _cfg(Section(0, 0x10, SectionKind.HEADER, "header"), Section(0x10, 0x100, SectionKind.RAW_BINARY, "boot"))
    with pytest.raises(ConfigError) as exc:
        validate_config(cfg, 0x100)
    assert "header must be 0x40 bytes" in str(exc.value)
