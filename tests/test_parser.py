"""Parser state machine and body extraction tests."""

from __future__ import annotations

import io

import pytest

from metallib_builder import (
    bodies_offset,
    build_metallib,
    entry,
    name_tag,
    record,
    size_tag,
)
from mtlinfo.reader import (
    EntryStubsParsed,
    HeaderParsed,
    Initial,
    MetalLibraryEntry,
    NotMetalLibraryError,
    Parser,
    TruncatedError,
)


# ── Helpers ─────────────────────────────────────────────────────────────────


BODY_A = b"\xde\xc0\x17\x0b" + b"A" * 12
BODY_B = b"\xde\xc0\x17\x0b" + b"B" * 20


def _two_entry_lib() -> bytes:
    return build_metallib(
        [
            entry("vertex_main", len(BODY_A), 0),
            entry("fragment_main", len(BODY_B), len(BODY_A)),
        ],
        bodies=BODY_A + BODY_B,
    )


class GuardedSource(io.BytesIO):
    """BytesIO that fails on any I/O once armed."""

    armed = False

    def _check(self):
        if self.armed:
            raise AssertionError("unexpected I/O after full scan")

    def read(self, *args):
        self._check()
        return super().read(*args)

    def readinto(self, *args):
        self._check()
        return super().readinto(*args)

    def seek(self, *args):
        self._check()
        return super().seek(*args)


# ── State machine ───────────────────────────────────────────────────────────


def test_state_transitions():
    p = Parser(io.BytesIO(_two_entry_lib()))
    assert isinstance(p.state, Initial)
    header = p.header()
    assert p.state == HeaderParsed(header)
    lib = p.library()
    assert p.state == EntryStubsParsed(lib)
    assert lib.header is header


def test_library_without_header_call():
    p = Parser(io.BytesIO(_two_entry_lib()))
    lib = p.library()
    assert lib.header.number_of_entries == 2
    assert [e.name for e in lib] == ["vertex_main", "fragment_main"]


def test_roundtrip_single_entry():
    data = build_metallib([entry("foo", 1234, 42)])
    lib = Parser(io.BytesIO(data)).library()
    assert lib.entry_stubs == (MetalLibraryEntry("foo", 1234, 42),)


def test_no_io_after_full_scan():
    src = GuardedSource(_two_entry_lib())
    p = Parser(src)
    header = p.header()
    lib = p.library()
    src.armed = True
    assert p.header() is header
    assert p.library() is lib
    assert p.find_entry("fragment_main").body_offset == len(BODY_A)
    assert p.entry_at(0).name == "vertex_main"


def test_header_read_once():
    src = GuardedSource(_two_entry_lib())
    p = Parser(src)
    header = p.header()
    src.armed = True
    assert p.header() is header


def test_unnamed_first_record_yields_no_stubs():
    data = build_metallib([record(size_tag(8)), entry("b", 1, 0)], count=2)
    p = Parser(io.BytesIO(data))
    lib = p.library()
    assert len(lib) == 0
    assert lib.header.number_of_entries == 2


def test_declared_count_bounds_stubs():
    data = build_metallib(
        [entry("a", 1, 0), record(name_tag("b")), entry("c", 1, 0)],
        count=2,
    )
    lib = Parser(io.BytesIO(data)).library()
    assert [e.name for e in lib] == ["a", "b"]


def test_declared_count_past_index_is_fatal():
    data = build_metallib([entry("a", 1, 0)], count=2)
    with pytest.raises(TruncatedError):
        Parser(io.BytesIO(data)).library()


# ── Bodies ──────────────────────────────────────────────────────────────────


def test_read_body_at_without_index():
    data = _two_entry_lib()
    p = Parser(io.BytesIO(data))
    off = bodies_offset(data)
    assert p.read_body_at(off, len(BODY_A)) == BODY_A
    assert isinstance(p.state, Initial)


def test_read_body_at_then_library():
    data = _two_entry_lib()
    p = Parser(io.BytesIO(data))
    p.header()
    p.read_body_at(bodies_offset(data), 4)
    assert len(p.library()) == 2


def test_read_body_by_entry():
    p = Parser(io.BytesIO(_two_entry_lib()))
    assert p.read_body(p.find_entry("vertex_main")) == BODY_A
    assert p.read_body(p.entry_at(1)) == BODY_B


def test_read_body_repeatable():
    data = _two_entry_lib()
    p = Parser(io.BytesIO(data))
    off = bodies_offset(data) + len(BODY_A)
    assert p.read_body_at(off, 8) == p.read_body_at(off, 8) == BODY_B[:8]


def test_read_body_into():
    data = _two_entry_lib()
    p = Parser(io.BytesIO(data))
    buf = bytearray(len(BODY_B))
    n = p.read_body_into(bodies_offset(data) + len(BODY_A), buf)
    assert n == len(BODY_B)
    assert bytes(buf) == BODY_B


def test_read_body_past_eof():
    data = _two_entry_lib()
    p = Parser(io.BytesIO(data))
    with pytest.raises(TruncatedError):
        p.read_body_at(len(data) - 2, 4)
    with pytest.raises(TruncatedError):
        p.read_body_into(len(data) - 2, bytearray(4))


# ── Lookups ─────────────────────────────────────────────────────────────────


def test_entry_at_out_of_range():
    p = Parser(io.BytesIO(_two_entry_lib()))
    with pytest.raises(IndexError):
        p.entry_at(2)
    with pytest.raises(IndexError):
        p.entry_at(-1)


def test_find_entry_missing():
    p = Parser(io.BytesIO(_two_entry_lib()))
    with pytest.raises(KeyError):
        p.find_entry("compute_main")


# ── Files ───────────────────────────────────────────────────────────────────


def test_open_file(tmp_path):
    path = tmp_path / "default.metallib"
    path.write_bytes(_two_entry_lib())
    with Parser.open(str(path)) as p:
        assert p.header().number_of_entries == 2
        assert p.read_body(p.entry_at(0)) == BODY_A


def test_open_rejects_bad_magic(tmp_path):
    data = bytearray(_two_entry_lib())
    data[0:4] = b"NOPE"
    path = tmp_path / "bad.metallib"
    path.write_bytes(bytes(data))
    with pytest.raises(NotMetalLibraryError, match="bad magic"):
        Parser.open(str(path))
    with Parser.open(str(path), check_magic=False) as p:
        assert len(p.library()) == 2


def test_is_metal_library_file():
    assert Parser.is_metal_library_file(io.BytesIO(_two_entry_lib()))
    assert not Parser.is_metal_library_file(io.BytesIO(b"\xcf\xfa\xed\xfe" * 4))


def test_close_leaves_borrowed_source_open():
    src = io.BytesIO(_two_entry_lib())
    with Parser(src) as p:
        p.library()
    assert not src.closed


def test_open_closes_file_on_bad_magic(tmp_path, monkeypatch):
    import mtlinfo.reader as reader_mod

    path = tmp_path / "bad.metallib"
    path.write_bytes(b"NOPE" + b"\x00" * 0x60)
    opened = []

    def _tracking_open(*args, **kwargs):
        fd = open(*args, **kwargs)
        opened.append(fd)
        return fd

    monkeypatch.setattr(reader_mod, "open", _tracking_open, raising=False)
    with pytest.raises(NotMetalLibraryError):
        Parser.open(str(path))
    assert len(opened) == 1
    assert opened[0].closed


def test_read_body_negative_length():
    p = Parser(io.BytesIO(_two_entry_lib()))
    with pytest.raises(ValueError, match="negative"):
        p.read_body_at(0, -1)
