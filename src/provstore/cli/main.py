#!/usr/bin/env python3
"""
provstore CLI - offline tools for content-addressed storage deals.

Commands:
  provstore cid <file>                   Content address of a file
  provstore pack <path>... -o out.car    Build an archive from files/directories
  provstore inspect <car>                Roots, blocks and integrity of an archive
  provstore extract <car> <path>         Write one file from an archive to stdout or -o
  provstore commp <car>                  Piece commitment of an archive
  provstore plan <car> --budget FIL      Cheapest provider plan from a catalog
  provstore chunking <size>              Chunking and piece-split plan for a payload size
  provstore config                       Effective configuration
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from ..addressing import address_of_stream
from ..archive import (
    build_archive,
    extract_file,
    list_blocks,
    list_files,
    load_archive,
    piece_commitment,
    save_archive,
    verify_archive_integrity,
)
from ..core import defaults
from ..core.config import get_config
from ..core.exceptions import ProvstoreError
from ..core.log import configure_logging
from ..optimizer import (
    StorageProvider,
    chunking_strategy,
    format_fil,
    optimize,
    plan_cost,
    recommend_providers,
)

SIZE_SUFFIXES = {"k": 1 << 10, "m": 1 << 20, "g": 1 << 30, "t": 1 << 40}


def parse_size(text: str) -> int:
    """Parse ``1048576``, ``512k``, ``10M``, ``32GiB`` into bytes."""
    value = text.strip().lower().removesuffix("ib").removesuffix("b")
    if value and value[-1] in SIZE_SUFFIXES:
        return int(float(value[:-1]) * SIZE_SUFFIXES[value[-1]])
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a size: {text!r}") from None


def format_size(n: int) -> str:
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if n < 1024 or unit == "TiB":
            return f"{n:.0f} {unit}" if unit == "B" else f"{n:.1f} {unit}"
        n /= 1024
    return f"{n} B"


def emit(data: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return
    for key, value in data.items():
        print(f"{key}: {value}")


def load_catalog(path: str) -> list[StorageProvider]:
    with open(path) as f:
        raw = json.load(f)
    entries = raw.get("providers", []) if isinstance(raw, dict) else raw
    return [StorageProvider.from_dict(e) for e in entries]


# ============================================================================
# Commands
# ============================================================================


def cmd_cid(args: argparse.Namespace) -> int:
    config = get_config()
    with open(args.file, "rb") as f:
        cid = address_of_stream(f, args.chunk_size or config.chunk_size, fanout=args.fanout or config.fanout)
    print(cid)
    return 0


def cmd_pack(args: argparse.Namespace) -> int:
    archive = build_archive(args.paths, args.chunk_size, args.fanout)
    written = save_archive(archive, args.output)
    emit(
        {"root": str(archive.root), "blocks": len(archive), "bytes": written, "output": args.output},
        args.json,
    )
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    data = Path(args.car).read_bytes()
    report = verify_archive_integrity(data)
    report["bytes"] = len(data)
    if args.blocks:
        report["block_list"] = list_blocks(data)
    if report["valid"] and args.files:
        report["files"] = [{"path": p, "size": s} for p, s in list_files(load_archive(args.car))]
    if args.json:
        emit(report, True)
    else:
        print(f"valid: {report['valid']}")
        print(f"bytes: {format_size(report['bytes'])}")
        print(f"blocks: {report['blocks']}")
        for root in report.get("roots", []):
            print(f"root: {root}")
        for error in report["errors"]:
            print(f"error: {error}")
        for entry in report.get("block_list", []):
            print(f"  {entry['cid']}  {entry['codec']:<9} {entry['size']}")
        for entry in report.get("files", []):
            print(f"  {entry['path'] or '.'}  {entry['size']}")
    return 0 if report["valid"] else 1


def cmd_extract(args: argparse.Namespace) -> int:
    archive = load_archive(args.car)
    data = extract_file(archive, args.path)
    if args.output:
        Path(args.output).write_bytes(data)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    return 0


def cmd_commp(args: argparse.Namespace) -> int:
    data = Path(args.car).read_bytes()
    commitment = piece_commitment(data, args.sector_size or 0)
    emit(
        {
            "piece_cid": str(commitment.cid),
            "payload_size": commitment.raw_size,
            "piece_size": commitment.padded_size,
        },
        args.json,
    )
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    catalog = load_catalog(args.catalog)
    data = Path(args.car).read_bytes()
    commitment = piece_commitment(data)
    if args.recommend:
        for entry in recommend_providers(catalog, len(data), args.duration, args.verified):
            print(
                f"{entry['provider']:<12} {entry['region'] or '-':<8} "
                f"{entry['reliability']:.2f}  {entry['estimated_cost_fil']} FIL"
            )
        return 0
    plan = optimize(
        len(data),
        args.budget,
        args.replicas,
        catalog,
        durations=[args.duration] if args.duration else None,
        max_replicas=args.max_replicas,
        verified=args.verified,
        piece_cid=str(commitment.cid),
        padded_size=commitment.padded_size,
    )
    if args.json:
        emit({"deals": [p.to_dict() for p in plan], "total_cost": plan_cost(plan)}, True)
        return 0
    for p in plan:
        print(f"{p.replica_index}: {p.provider} {p.duration_epochs} epochs {format_fil(p.total_cost)}")
    print(f"total: {format_fil(plan_cost(plan))}")
    return 0


def cmd_chunking(args: argparse.Namespace) -> int:
    plan = chunking_strategy(args.size)
    emit(plan.to_dict(), args.json)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    emit(get_config().to_dict(), args.json)
    return 0


# ============================================================================
# Parser
# ============================================================================


def app() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="provstore", description="Content-addressed storage deal tools")
    parser.add_argument("--log-level", default=None, help="Logging level (default from PROVSTORE_LOG_LEVEL)")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    cid_parser = subparsers.add_parser("cid", help="Content address of a file")
    cid_parser.add_argument("file")
    cid_parser.add_argument("--chunk-size", type=parse_size)
    cid_parser.add_argument("--fanout", type=int)

    pack_parser = subparsers.add_parser("pack", help="Build an archive")
    pack_parser.add_argument("paths", nargs="+")
    pack_parser.add_argument("--output", "-o", required=True)
    pack_parser.add_argument("--chunk-size", type=parse_size)
    pack_parser.add_argument("--fanout", type=int)

    inspect_parser = subparsers.add_parser("inspect", help="Check an archive")
    inspect_parser.add_argument("car")
    inspect_parser.add_argument("--blocks", action="store_true", help="List every block")
    inspect_parser.add_argument("--files", action="store_true", help="List contained files")

    extract_parser = subparsers.add_parser("extract", help="Extract one file")
    extract_parser.add_argument("car")
    extract_parser.add_argument("path", help="Slash-separated path inside the archive")
    extract_parser.add_argument("--output", "-o")

    commp_parser = subparsers.add_parser("commp", help="Piece commitment")
    commp_parser.add_argument("car")
    commp_parser.add_argument("--sector-size", type=parse_size)

    plan_parser = subparsers.add_parser("plan", help="Choose providers within a budget")
    plan_parser.add_argument("car")
    plan_parser.add_argument("--catalog", "-c", required=True, help="Provider catalog JSON")
    plan_parser.add_argument("--budget", "-b", default="0", help="Budget in FIL")
    plan_parser.add_argument("--replicas", "-r", type=int, default=defaults.DEFAULT_REPLICATION_FACTOR)
    plan_parser.add_argument("--max-replicas", type=int)
    plan_parser.add_argument("--duration", type=int, help="Deal duration in epochs")
    plan_parser.add_argument("--verified", action="store_true")
    plan_parser.add_argument("--recommend", action="store_true", help="Only rank providers")

    chunking_parser = subparsers.add_parser("chunking", help="Chunking plan for a payload size")
    chunking_parser.add_argument("size", type=parse_size)

    subparsers.add_parser("config", help="Show effective configuration")
    return parser


COMMANDS = {
    "cid": cmd_cid,
    "pack": cmd_pack,
    "inspect": cmd_inspect,
    "extract": cmd_extract,
    "commp": cmd_commp,
    "plan": cmd_plan,
    "chunking": cmd_chunking,
    "config": cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    config = get_config()
    configure_logging(args.log_level or config.log_level, config.log_json)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except ProvstoreError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
