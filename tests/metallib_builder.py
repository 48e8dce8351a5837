"""Build synthetic .metallib images for tests."""

from __future__ import annotations

import struct

COUNT_POINTER = 0x58
HEADER_LEN = 0x58


def tag(code: bytes, payload: bytes, length: int | None = None) -> bytes:
    if length is None:
        length = len(payload)
    return code + struct.pack("<H", length) + payload


def name_tag(name: str) -> bytes:
    return tag(b"NAME", name.encode("utf-8") + b"\x00")


def size_tag(size: int) -> bytes:
    return tag(b"MDSZ", struct.pack("<Q", size))


def offset_tag(offset: int, lead: tuple[int, int] = (0, 0)) -> bytes:
    return tag(b"OFFT", struct.pack("<QQQ", lead[0], lead[1], offset))


END = b"ENDT"


def record(*tags: bytes) -> bytes:
    """One entry-header record: size field, tags, ENDT."""
    body = b"".join(tags) + END
    return struct.pack("<I", 4 + len(body)) + body


def entry(name: str, size: int, offset: int) -> bytes:
    return record(name_tag(name), size_tag(size), offset_tag(offset))


def build_metallib(
    records: list[bytes],
    bodies: bytes = b"",
    count: int | None = None,
) -> bytes:
    """Header, entry count, records, then the bodies section."""
    if count is None:
        count = len(records)
    header = bytearray(HEADER_LEN)
    header[0:4] = b"MTLB"
    index = struct.pack("<I", count) + b"".join(records)
    bodies_pointer = COUNT_POINTER + len(index)
    struct.pack_into("<I", header, 0x18, COUNT_POINTER)
    struct.pack_into("<I", header, 0x48, bodies_pointer)
    return bytes(header) + index + bodies


def bodies_offset(data: bytes) -> int:
    return struct.unpack_from("<I", data, 0x48)[0]
