from __future__ import annotations

import argparse
import json
import logging
import pathlib
import sys
from typing import Any, Dict, List, Optional

from . import __version__, mio0
from .config import ConfigError, SectionKind, load_config, validate_config
from .rom import parse_header, read_rom
from .scripts import decode_behavior_script, decode_level_script
from .sections import SectionTable
from .split import GEN_DIR, SplitError, split_rom

logger = logging.getLogger("n64split")


def _setup_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def cmd_split(args: argparse.Namespace) -> int:
    rom_be, order = read_rom(args.rom)
    cfg = load_config(args.config)
    validate_config(cfg, len(rom_be))
    logger.info("splitting %s (%s, %s order, 0x%X bytes)", args.rom, cfg.name or cfg.basename, order, len(rom_be))
    result = split_rom(rom_be, cfg, pathlib.Path(args.root), jobs=args.jobs, gen_name=args.outdir)
    report = result.to_report()
    print(json.dumps({"listing": report["listing"], "makefile": report["makefile"], **report["counts"]}, indent=2))
    return 0


def cmd_rom_info(args: argparse.Namespace) -> int:
    rom_be, order = read_rom(args.rom)
    report: Dict[str, Any] = {
        "rom": args.rom,
        "rom_order": order,
        "size": len(rom_be),
        "header": parse_header(rom_be),
    }
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


def cmd_scan_mio0(args: argparse.Namespace) -> int:
    rom_be, _ = read_rom(args.rom)
    streams: List[Dict[str, Any]] = []
    for off in mio0.find_headers(rom_be):
        hdr = mio0.parse_header(rom_be, off)
        streams.append({"offset": f"0x{off:08X}", "decompressed_size": hdr.dest_size})
    report = {"rom": args.rom, "count": len(streams), "streams": streams}
    if args.json:
        pathlib.Path(args.json).write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(json.dumps(report, indent=2))
    return 0


def cmd_decompress(args: argparse.Namespace) -> int:
    rom_be, _ = read_rom(args.rom)
    off = int(args.offset, 0)
    dec = mio0.decode(rom_be, off)
    out = pathlib.Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(dec)
    print(
        json.dumps(
            {
                "rom": args.rom,
                "offset": f"0x{off:08X}",
                "out": str(out),
                "decompressed_size": len(dec),
            },
            indent=2,
        )
    )
    return 0


def _find_section(table: SectionTable, key: str) -> Optional[int]:
    for i, sec in enumerate(table):
        if sec.label == key:
            return i
    try:
        return table.lookup_start(int(key, 0))
    except ValueError:
        return None


def cmd_scripts(args: argparse.Namespace) -> int:
    rom_be, _ = read_rom(args.rom)
    cfg = load_config(args.config)
    validate_config(cfg, len(rom_be))
    table = SectionTable(cfg.sections)
    idx = _find_section(table, args.section)
    if idx is None:
        raise ConfigError(f"no section labeled or starting at {args.section!r}")
    sec = table[idx]
    if sec.kind is SectionKind.LEVEL_SCRIPT:
        lines = decode_level_script(rom_be, sec, table)
    elif sec.kind is SectionKind.BEHAVIOR_SCRIPT:
        lines = decode_behavior_script(rom_be, sec)
    else:
        raise ConfigError(f"section {sec.symbol} is {sec.kind.value}, not a level or behavior script")
    for line in lines:
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="n64split", description="Config-driven N64 ROM splitter")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    p.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    sub = p.add_subparsers(dest="cmd", required=True)

    psp = sub.add_parser("split", help="Split a ROM into an assembler listing, binaries, textures and level scripts")
    psp.add_argument("--rom", required=True, help="Path to ROM (.z64/.v64/.n64)")
    psp.add_argument("--config", required=True, help="Config file (.yaml/.yml/.json)")
    psp.add_argument("--root", default=".", help="Project root; generated paths are relative to it (default: .)")
    psp.add_argument("--outdir", default=GEN_DIR, help=f"Output directory under the root (default: {GEN_DIR})")
    psp.add_argument("--jobs", type=int, default=1, help="Worker threads for MIO0/texture extraction (default: 1)")
    psp.set_defaults(func=cmd_split)

    pri = sub.add_parser("rom-info", help="Report ROM byte order and decoded header")
    pri.add_argument("--rom", required=True, help="Path to ROM (.z64/.v64/.n64)")
    pri.add_argument("--json", help="Optional output JSON path")
    pri.set_defaults(func=cmd_rom_info)

    psc = sub.add_parser("scan-mio0", help="Scan ROM for MIO0 stream headers")
    psc.add_argument("--rom", required=True, help="Path to ROM")
    psc.add_argument("--json", help="Optional output JSON path")
    psc.set_defaults(func=cmd_scan_mio0)

    pds = sub.add_parser("decompress", help="Decompress a single MIO0 stream by ROM offset")
    pds.add_argument("--rom", required=True, help="Path to ROM")
    pds.add_argument("--offset", required=True, help="Stream offset (hex or int)")
    pds.add_argument("--out", required=True, help="Output decompressed binary path")
    pds.set_defaults(func=cmd_decompress)

    pls = sub.add_parser("scripts", help="Decode one level or behavior script section to stdout")
    pls.add_argument("--rom", required=True, help="Path to ROM")
    pls.add_argument("--config", required=True, help="Config file (.yaml/.yml/.json)")
    pls.add_argument("--section", required=True, help="Section label or ROM start offset")
    pls.set_defaults(func=cmd_scripts)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.quiet)
    try:
        return int(args.func(args))
    except (ConfigError, SplitError) as e:
        logger.error("%s", e)
        return e.exit_code
    except (OSError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
