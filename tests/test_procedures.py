from conftest import RAM_OFFSET, be
from n64split.addressing import AddressTranslator
from n64split.config import RomConfig, Section, SectionKind
from n64split.procedures import (
    JR_RA,
    Procedure,
    ProcedureIndex,
    branch_target,
    find_procedures,
    jump_target,
    scan_procedure_end,
)

TR = AddressTranslator(RAM_OFFSET)
CODE = Section(0x1000, 0x1040, SectionKind.CODE)


def _rom(words, at=0x1000):
    rom = bytearray(0x2000)
    code = be(*words)
    rom[at : at + len(code)] = code
    return bytes(rom)


def _config(**kw):
    return RomConfig(basename="t", sections=[CODE], ram_offset=RAM_OFFSET, **kw)


def test_jump_and_branch_targets():
    assert jump_target(0x0C000404, 0x80001000) == 0x80001010
    assert jump_target(0x08000404, 0x80001000) == 0x80001010
    assert jump_target(0x00000000, 0x80001000) is None
    assert branch_target(0x10000002, 0x80001010) == 0x8000101C
    assert branch_target(0x1000FFFF, 0x80001010) == 0x80001010
    assert branch_target(0x04110003, 0x80001000) == 0x80001010
    assert branch_target(0x45000001, 0x80001000) == 0x80001008
    assert branch_target(JR_RA, 0x80001000) is None


def test_find_procedures_from_jal_and_jr_ra():
    rom = _rom(
        [
            0x0C000404, 0, JR_RA, 0,
            0x10000002, 0, JR_RA, JR_RA, 0,
        ]
    )
    procs = list(find_procedures(rom, _config(), TR))
    assert [(p.start, p.end) for p in procs] == [
        (0x80001000, 0x80001010),
        (0x80001010, 0x80001024),
    ]


def test_config_labels_name_procedures():
    rom = _rom([0x0C000404, 0, JR_RA, 0, 0, JR_RA, 0])
    procs = list(find_procedures(rom, _config(labels={0x80001010: "helper", 0x90000000: "elsewhere"}), TR))
    assert [p.label for p in procs] == ["proc_80001000", "helper"]


def test_excluded_nested_procedure_does_not_bound_parent():
    rom = _rom([0, 0, JR_RA, 0])
    labels = {0x80001004: "inner"}
    plain = find_procedures(rom, _config(labels=labels), TR)
    assert [(p.start, p.end) for p in plain][0] == (0x80001000, 0x80001004)
    nested = find_procedures(rom, _config(labels=labels, exclude_procedures=frozenset([0x80001004])), TR)
    assert [(p.start, p.end) for p in nested][0] == (0x80001000, 0x80001010)


def test_scan_without_return_runs_to_limit():
    rom = _rom([0] * 16)
    assert scan_procedure_end(rom, TR, 0x80001000, 0x80001040) == 0x80001040


def test_in_range_selects_by_start():
    index = ProcedureIndex(
        [
            Procedure(0x80001020, 0x80001030),
            Procedure(0x80001000, 0x80001010),
            Procedure(0x80002000, 0x80002010),
        ]
    )
    assert [p.start for p in index] == [0x80001000, 0x80001020, 0x80002000]
    assert [p.start for p in index.in_range(0x80001000, 0x80001020)] == [0x80001000]
    assert [p.start for p in index.in_range(0x80001004, 0x80003000)] == [0x80001020, 0x80002000]
    assert index.in_range(0x90000000, 0x90001000) == []
    assert index.names()[0x80001020] == "proc_80001020"
