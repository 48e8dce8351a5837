"""metallib reader – validate, decode, and index .metallib files."""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Union

from .format import (
    MAGIC,
    ENTRY_COUNT_POINTER_OFFSET,
    ENTRY_BODIES_POINTER_OFFSET,
    ENTRY_SIZE_FIELD,
    OFFT_BODY_OFFSET_SLOT,
    OFFT_MIN_LENGTH,
    TAG_CODE_SIZE,
    TAG_ENDT,
    TAG_MDSZ,
    TAG_NAME,
    TAG_OFFT,
    U16_FMT,
    U16_SIZE,
    U32_FMT,
    U32_SIZE,
    U64_FMT,
    U64_SIZE,
)

logger = logging.getLogger("mtlinfo")


# ── Exceptions ──────────────────────────────────────────────────────────────


class MetalLibError(Exception):
    """Base exception for metallib format / parse errors."""


class TruncatedError(MetalLibError, EOFError):
    """A read hit end-of-file before the requested byte count."""


class NotMetalLibraryError(MetalLibError):
    """Container signature is not ``MTLB``."""


class DecodeError(MetalLibError):
    """A tag payload is structurally invalid."""


# ── Primitive reads ─────────────────────────────────────────────────────────


def _read_exact(source: BinaryIO, length: int) -> bytes:
    offset = source.tell()
    data = source.read(length)
    if len(data) != length:
        raise TruncatedError(
            f"short read at offset {offset}: wanted {length} bytes, "
            f"got {len(data)}"
        )
    return data


def _read_u16(source: BinaryIO) -> int:
    return struct.unpack(U16_FMT, _read_exact(source, U16_SIZE))[0]


def _read_u32(source: BinaryIO) -> int:
    return struct.unpack(U32_FMT, _read_exact(source, U32_SIZE))[0]


def _read_u64(source: BinaryIO) -> int:
    return struct.unpack(U64_FMT, _read_exact(source, U64_SIZE))[0]


# ── Records ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HeaderInformation:
    """Fixed header fields, decoded once per parser."""

    entry_headers_offset: int
    entry_bodies_offset: int
    number_of_entries: int


@dataclass(frozen=True)
class Tag:
    """Raw description of one (code, length) record."""

    code: bytes
    length: int


@dataclass(frozen=True)
class NameTag:
    text: str


@dataclass(frozen=True)
class SizeTag:
    value: int


@dataclass(frozen=True)
class OffsetTag:
    value: int


@dataclass(frozen=True)
class EndTag:
    pass


@dataclass(frozen=True)
class OtherTag:
    tag: Tag


EntryHeaderTag = Union[NameTag, SizeTag, OffsetTag, EndTag, OtherTag]


@dataclass(frozen=True)
class MetalLibraryEntry:
    """Entry stub: where one function's body lives, without the body."""

    name: str
    body_size: int = 0
    body_offset: int = 0


@dataclass(frozen=True)
class MetalLibrary:
    """Header plus entry stubs in file-scan order."""

    header: HeaderInformation
    entry_stubs: tuple[MetalLibraryEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entry_stubs)

    def __iter__(self) -> Iterator[MetalLibraryEntry]:
        return iter(self.entry_stubs)

    def find(self, name: str) -> MetalLibraryEntry | None:
        """Return the first stub named *name*, or ``None``."""
        for entry in self.entry_stubs:
            if entry.name == name:
                return entry
        return None


# ── Magic & header ──────────────────────────────────────────────────────────


def is_metal_library(source: BinaryIO) -> bool:
    """Check the 4-byte signature at offset 0.

    The cursor is left after the magic; callers that go on parsing must not
    rely on its position.
    """
    source.seek(0)
    return _read_exact(source, len(MAGIC)) == MAGIC


def decode_header(source: BinaryIO) -> HeaderInformation:
    source.seek(ENTRY_COUNT_POINTER_OFFSET)
    count_pointer = _read_u32(source)

    source.seek(ENTRY_BODIES_POINTER_OFFSET)
    bodies_pointer = _read_u32(source)

    source.seek(count_pointer)
    number_of_entries = _read_u32(source)

    header = HeaderInformation(
        entry_headers_offset=count_pointer + U32_SIZE,
        entry_bodies_offset=bodies_pointer,
        number_of_entries=number_of_entries,
    )
    logger.debug(
        "header: %d entries, headers at 0x%x, bodies at 0x%x",
        header.number_of_entries,
        header.entry_headers_offset,
        header.entry_bodies_offset,
    )
    return header


# ── Tag reader ──────────────────────────────────────────────────────────────


def next_tag(source: BinaryIO) -> EntryHeaderTag:
    """Decode the tag at the cursor and leave the cursor at the next one.

    ``ENDT`` carries no length field. ``MDSZ`` is always read as a u64
    regardless of its declared length. Unknown codes are skipped.
    """
    code = _read_exact(source, TAG_CODE_SIZE)
    logger.debug("tag %r", code)
    if code == TAG_ENDT:
        return EndTag()

    length = _read_u16(source)
    logger.debug("  length %d", length)

    if code == TAG_NAME:
        raw = _read_exact(source, length)
        if raw.endswith(b"\x00"):
            raw = raw[:-1]
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"NAME payload is not valid UTF-8: {raw!r}") from exc
        logger.info("  name %r", text)
        return NameTag(text)

    if code == TAG_MDSZ:
        size = _read_u64(source)
        logger.info("  function size %d", size)
        return SizeTag(size)

    if code == TAG_OFFT:
        if length < OFFT_MIN_LENGTH:
            raise DecodeError(
                f"OFFT payload too short: {length} bytes "
                f"(need at least {OFFT_MIN_LENGTH})"
            )
        payload = _read_exact(source, length)
        if logger.isEnabledFor(logging.DEBUG):
            for slot in range(length // U64_SIZE):
                value = struct.unpack_from(U64_FMT, payload, slot * U64_SIZE)[0]
                logger.debug("  offset slot %d = %d", slot, value)
        offset = struct.unpack(U64_FMT, payload[OFFT_BODY_OFFSET_SLOT])[0]
        return OffsetTag(offset)

    source.seek(length, io.SEEK_CUR)
    return OtherTag(Tag(code=code, length=length))


# ── Entry header scanner ────────────────────────────────────────────────────


def next_entry(source: BinaryIO) -> MetalLibraryEntry | None:
    """Fold one entry-header record into a stub.

    Later tags overwrite earlier ones. Returns ``None`` when the record has
    no ``NAME`` tag.
    """
    source.seek(ENTRY_SIZE_FIELD, io.SEEK_CUR)

    name: str | None = None
    body_size = 0
    body_offset = 0
    while True:
        tag = next_tag(source)
        if isinstance(tag, EndTag):
            break
        if isinstance(tag, NameTag):
            name = tag.text
        elif isinstance(tag, SizeTag):
            body_size = tag.value
        elif isinstance(tag, OffsetTag):
            body_offset = tag.value
        else:
            logger.debug("  skipped %r (%d bytes)", tag.tag.code, tag.tag.length)

    if name is None:
        return None
    return MetalLibraryEntry(name=name, body_size=body_size, body_offset=body_offset)


# ── Entry stream ────────────────────────────────────────────────────────────


class EntryStream:
    """Lazy, finite, non-restartable sequence of entry stubs.

    Reads from the current cursor of *source*. Stops after *limit* entries
    or at the first record without a ``NAME`` tag, whichever comes first,
    and stays exhausted afterwards.
    """

    def __init__(self, source: BinaryIO, limit: int) -> None:
        self._source = source
        self._limit = limit
        self._done = limit <= 0
        self.entries_read = 0

    def __iter__(self) -> EntryStream:
        return self

    def __next__(self) -> MetalLibraryEntry:
        if self._done:
            raise StopIteration
        entry = next_entry(self._source)
        if entry is None:
            self._done = True
            logger.warning(
                "entry %d has no NAME tag; stopping after %d of %d entries",
                self.entries_read, self.entries_read, self._limit,
            )
            raise StopIteration
        self.entries_read += 1
        if self.entries_read >= self._limit:
            self._done = True
        return entry

    def __length_hint__(self) -> int:
        if self._done:
            return 0
        return self._limit - self.entries_read


# ── Parser states ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Initial:
    """Nothing has been read yet."""


@dataclass(frozen=True)
class HeaderParsed:
    header: HeaderInformation


@dataclass(frozen=True)
class EntryStubsParsed:
    library: MetalLibrary


ParsingState = Union[Initial, HeaderParsed, EntryStubsParsed]


# ── Parser ──────────────────────────────────────────────────────────────────


class Parser:
    """Memoizing metallib parser around a seekable binary source.

    State only moves forward: ``Initial`` → ``HeaderParsed`` →
    ``EntryStubsParsed``. The header is decoded at most once and the entry
    index is scanned at most once; body reads are never cached.

    Usage::

        with Parser.open("default.metallib") as p:
            for entry in p.library():
                print(entry.name, entry.body_size)
            bitcode = p.read_body(p.find_entry("vertex_main"))
    """

    is_metal_library_file = staticmethod(is_metal_library)

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self._state: ParsingState = Initial()
        self._owns_source = False

    @classmethod
    def open(cls, path: str, check_magic: bool = True) -> Parser:
        """Open *path* for reading; the parser closes it on :meth:`close`."""
        fd = open(path, "rb")  # noqa: SIM115
        try:
            if check_magic and not is_metal_library(fd):
                raise NotMetalLibraryError(f"{path}: bad magic, not a metallib file")
        except Exception:
            fd.close()
            raise
        parser = cls(fd)
        parser._owns_source = True
        return parser

    @property
    def state(self) -> ParsingState:
        return self._state

    # ── Index ────────────────────────────────────────────────────────────

    def header(self) -> HeaderInformation:
        state = self._state
        if isinstance(state, HeaderParsed):
            return state.header
        if isinstance(state, EntryStubsParsed):
            return state.library.header
        header = decode_header(self._source)
        self._state = HeaderParsed(header)
        return header

    def library(self) -> MetalLibrary:
        header = self.header()
        state = self._state
        if isinstance(state, EntryStubsParsed):
            return state.library

        self._source.seek(header.entry_headers_offset)
        stream = EntryStream(self._source, header.number_of_entries)
        library = MetalLibrary(header=header, entry_stubs=tuple(stream))
        logger.debug(
            "indexed %d of %d declared entries",
            len(library), header.number_of_entries,
        )
        self._state = EntryStubsParsed(library)
        return library

    def entry_at(self, index: int) -> MetalLibraryEntry:
        stubs = self.library().entry_stubs
        if not 0 <= index < len(stubs):
            raise IndexError(f"entry index {index} out of range ({len(stubs)} entries)")
        return stubs[index]

    def find_entry(self, name: str) -> MetalLibraryEntry:
        entry = self.library().find(name)
        if entry is None:
            raise KeyError(f"entry {name!r} not found")
        return entry

    # ── Body I/O ─────────────────────────────────────────────────────────

    def read_body_at(self, offset: int, length: int) -> bytes:
        """Read exactly *length* bytes at absolute *offset*."""
        if length < 0:
            raise ValueError(f"negative body length: {length}")
        self._source.seek(offset)
        return _read_exact(self._source, length)

    def read_body_into(self, offset: int, buffer) -> int:
        """Fill the writable *buffer* from absolute *offset*; return its size."""
        view = memoryview(buffer).cast("B")
        self._source.seek(offset)
        n = self._source.readinto(view)
        if n != len(view):
            raise TruncatedError(
                f"short read at offset {offset}: wanted {len(view)} bytes, got {n}"
            )
        return n

    def read_body(self, entry: MetalLibraryEntry) -> bytes:
        """Read the bitcode body of *entry* from the data section."""
        offset = self.header().entry_bodies_offset + entry.body_offset
        return self.read_body_at(offset, entry.body_size)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def close(self) -> None:
        if self._owns_source:
            self._source.close()

    def __enter__(self) -> Parser:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
