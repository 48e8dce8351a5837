"""mtl-info CLI – inspect, list, and extract entries from .metallib files."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import zstandard as zstd

from . import __version__
from .index import body_digests, dump_index
from .reader import MetalLibError, Parser


# ── Configuration ───────────────────────────────────────────────────────────

DEFAULT_VERBOSITY = 1

_LEVELS = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
}


def _default_verbosity() -> int:
    raw = os.environ.get("MTLINFO_VERBOSITY", "").strip()
    return int(raw) if raw.isdigit() else DEFAULT_VERBOSITY


def _log_level(verbosity: int) -> int:
    return _LEVELS.get(max(verbosity, 0), logging.DEBUG)


# ── Terminal UI (stdlib only: colors when TTY, Unicode tables) ───────────────

def _color_enabled() -> bool:
    if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
        return False
    return os.environ.get("NO_COLOR", "").strip() == ""

_COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "green": "\033[32m",
    "red": "\033[31m",
    "cyan": "\033[36m",
    "bold": "\033[1m",
}

def _c(name: str, text: str) -> str:
    if not _color_enabled() or name not in _COLORS:
        return text
    return f"{_COLORS[name]}{text}{_COLORS['reset']}"

def _section(title: str) -> str:
    return _c("cyan", f"\n  ◆ {title}")

def _ok(msg: str) -> str:
    return _c("green", "✓ ") + msg

def _fail(msg: str) -> str:
    return _c("red", "✗ ") + msg

def _table(headers: list[str], rows: list[list[str]], padding: int = 1) -> list[str]:
    """Return lines for a UTF-8 box table. Column widths from content."""
    col_count = len(headers)
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row[:col_count]):
            widths[i] = max(widths[i], len(cell))
    pad = " " * padding
    lines = ["╭" + "┬".join("─" * (w + 2 * padding) for w in widths) + "╮"]
    lines.append("│" + "│".join(pad + h.ljust(widths[i]) + pad for i, h in enumerate(headers)) + "│")
    lines.append("├" + "┼".join("─" * (w + 2 * padding) for w in widths) + "┤")
    for row in rows:
        cells = [pad + (row[i] if i < len(row) else "").ljust(widths[i]) + pad for i in range(col_count)]
        lines.append("│" + "│".join(cells) + "│")
    lines.append("╰" + "┴".join("─" * (w + 2 * padding) for w in widths) + "╯")
    return lines


def _entry_rows(parser: Parser, with_hash: bool) -> tuple[list[str], list[list[str]]]:
    headers = ["#", "Name", "Size", "Offset"]
    library = parser.library()
    digests = body_digests(parser) if with_hash else None
    if digests is not None:
        headers.append("BLAKE3")
    rows = []
    for i, entry in enumerate(library):
        row = [str(i), entry.name, str(entry.body_size), str(entry.body_offset)]
        if digests is not None:
            row.append(digests[i][:16])
        rows.append(row)
    return headers, rows


# ── count ───────────────────────────────────────────────────────────────────


def cmd_count(args: argparse.Namespace) -> None:
    with Parser.open(args.file) as parser:
        print(parser.header().number_of_entries)


# ── list ────────────────────────────────────────────────────────────────────


def cmd_list(args: argparse.Namespace) -> None:
    with Parser.open(args.file) as parser:
        headers, rows = _entry_rows(parser, args.hash)
        for line in _table(headers, rows):
            print(line)


# ── inspect ─────────────────────────────────────────────────────────────────


def cmd_inspect(args: argparse.Namespace) -> None:
    with Parser.open(args.file) as parser:
        header = parser.header()
        print(_c("bold", "\n  metallib  ") + _c("dim", args.file))
        print(_section("Header"))
        print(f"    Entries        {header.number_of_entries}")
        print(f"    Headers at     0x{header.entry_headers_offset:x}")
        print(f"    Bodies at      0x{header.entry_bodies_offset:x}")

        headers, rows = _entry_rows(parser, args.hash)
        declared = header.number_of_entries
        title = f"Entries ({len(rows)})"
        if len(rows) != declared:
            title = f"Entries ({len(rows)} of {declared} declared)"
        print(_section(title))
        for line in _table(headers, rows):
            print("  " + line)
        print()


# ── bitcode ─────────────────────────────────────────────────────────────────


def cmd_bitcode(args: argparse.Namespace) -> None:
    with Parser.open(args.file) as parser:
        if args.name is not None:
            entry = parser.find_entry(args.name)
        else:
            entry = parser.entry_at(args.index)
        data = parser.read_body(entry)

    if args.zstd:
        data = zstd.ZstdCompressor().compress(data)

    if args.output:
        with open(args.output, "wb") as f:
            f.write(data)
        print(_ok(f"Wrote {entry.name} ({len(data):,} bytes) → {args.output}"), file=sys.stderr)
    else:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()


# ── export ──────────────────────────────────────────────────────────────────


def cmd_export(args: argparse.Namespace) -> None:
    with Parser.open(args.file) as parser:
        library = parser.library()
        digests = body_digests(parser) if args.hash else None
    dump_index(library, args.output, as_json=args.json, digests=digests)
    kind = "JSON" if args.json else "msgpack"
    print(_ok(f"Exported {len(library)} entries ({kind}) → {args.output}"))


# ── Entry point ─────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mtl-info", description="Read information from metallib files."
    )
    parser.add_argument(
        "--version", action="version", version=f"mtl-info {__version__}"
    )
    parser.add_argument(
        "--verbosity", type=int, default=_default_verbosity(),
        help="Logger level between 0 (errors) and 3 (debug); "
             "default from MTLINFO_VERBOSITY or 1",
    )
    sub = parser.add_subparsers(dest="command")

    # count
    p = sub.add_parser("count", help="Print number of entries")
    p.add_argument("file")

    # list / ls
    p = sub.add_parser("list", help="Print list of entries", aliases=["ls"])
    p.add_argument("file")
    p.add_argument("--hash", action="store_true",
                   help="Add a BLAKE3 digest of each body (needs blake3)")

    # inspect / info
    p = sub.add_parser("inspect", help="Print header and entries", aliases=["info"])
    p.add_argument("file")
    p.add_argument("--hash", action="store_true",
                   help="Add a BLAKE3 digest of each body (needs blake3)")

    # bitcode
    p = sub.add_parser("bitcode", help="Print bitcode of an entry")
    p.add_argument("file")
    which = p.add_mutually_exclusive_group(required=True)
    which.add_argument("--with-name", "-f", dest="name", help="Find entry by name")
    which.add_argument("--with-index", "-i", dest="index", type=int,
                       help="Find entry by index in FILE")
    p.add_argument("--output", "-o", help="Write to file instead of stdout")
    p.add_argument("--zstd", action="store_true", help="Compress with zstandard")

    # export
    p = sub.add_parser("export", help="Write the entry index as msgpack or JSON")
    p.add_argument("file")
    p.add_argument("output")
    p.add_argument("--json", action="store_true", help="Write JSON instead of msgpack")
    p.add_argument("--hash", action="store_true",
                   help="Include BLAKE3 body digests (needs blake3)")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=_log_level(args.verbosity),
        format="%(levelname)s %(name)s: %(message)s",
    )

    cmds = {
        "count": cmd_count,
        "list": cmd_list,
        "ls": cmd_list,  # alias
        "inspect": cmd_inspect,
        "info": cmd_inspect,  # alias
        "bitcode": cmd_bitcode,
        "export": cmd_export,
    }
    fn = cmds.get(args.command)
    if fn is None:
        parser.print_help()
        sys.exit(1)
    try:
        fn(args)
    except (MetalLibError, OSError, ImportError) as exc:
        print(_fail(str(exc)), file=sys.stderr)
        sys.exit(1)
    except LookupError as exc:
        print(_fail(exc.args[0] if exc.args else str(exc)), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
