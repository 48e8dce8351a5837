"""Export the decoded entry index as msgpack or JSON."""

from __future__ import annotations

import json
from typing import Any

import msgpack

from . import _blake3
from .reader import MetalLibrary, Parser

INDEX_FORMAT = "metallib"


def body_digests(parser: Parser) -> list[str]:
    """BLAKE3 hex digest of every entry body, in index order."""
    _blake3.required()
    return [_blake3.hexdigest(parser.read_body(e)) for e in parser.library()]


def library_to_dict(
    library: MetalLibrary,
    digests: list[str] | None = None,
) -> dict[str, Any]:
    if digests is not None and len(digests) != len(library):
        raise ValueError(
            f"got {len(digests)} digests for {len(library)} entries"
        )
    header = library.header
    entries = []
    for i, entry in enumerate(library):
        item: dict[str, Any] = {
            "name": entry.name,
            "body_size": entry.body_size,
            "body_offset": entry.body_offset,
        }
        if digests is not None:
            item["hash_b3"] = digests[i]
        entries.append(item)
    return {
        "format": INDEX_FORMAT,
        "header": {
            "number_of_entries": header.number_of_entries,
            "entry_headers_offset": header.entry_headers_offset,
            "entry_bodies_offset": header.entry_bodies_offset,
        },
        "entries": entries,
    }


def dump_index(
    library: MetalLibrary,
    path: str,
    *,
    as_json: bool = False,
    digests: list[str] | None = None,
) -> None:
    data = library_to_dict(library, digests)
    if as_json:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
    else:
        with open(path, "wb") as f:
            f.write(msgpack.packb(data, use_bin_type=True))


def load_index(path: str) -> dict[str, Any]:
    """Read an index written by :func:`dump_index` (JSON if *path* ends in .json)."""
    if path.endswith(".json"):
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    with open(path, "rb") as f:
        return msgpack.unpackb(f.read(), raw=False)
