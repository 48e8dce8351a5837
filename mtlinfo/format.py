"""metallib binary layout constants and struct formats."""

from __future__ import annotations

import struct

# ── Magic ───────────────────────────────────────────────────────────────────

MAGIC = b"MTLB"

# ── Fixed header pointers (absolute offsets) ───────────────────────────────
#
# Header:
#   0x00  magic[4]
#   0x18  u32 pointer to the entry-count field
#   0x48  u32 pointer to the entry-bodies data section
#
# [count ptr]      u32 number of entries
# [count ptr + 4]  first entry-header record

ENTRY_COUNT_POINTER_OFFSET = 0x18
ENTRY_BODIES_POINTER_OFFSET = 0x48

# ── Struct formats (little-endian) ──────────────────────────────────────────

U16_FMT = "<H"
U32_FMT = "<I"
U64_FMT = "<Q"

U16_SIZE = struct.calcsize(U16_FMT)
U32_SIZE = struct.calcsize(U32_FMT)
U64_SIZE = struct.calcsize(U64_FMT)

TAG_CODE_SIZE = 4

# ── Entry-header records ────────────────────────────────────────────────────
#
# Record:
#   u32 entry size (not needed for navigation)
#   tag*  code[4] length(u16) payload[length]
#   "ENDT" (no length, no payload)

ENTRY_SIZE_FIELD = U32_SIZE

TAG_NAME = b"NAME"   # UTF-8 function name + trailing NUL
TAG_MDSZ = b"MDSZ"   # u64 body size
TAG_OFFT = b"OFFT"   # table of u64 offsets, body offset in the third slot
TAG_ENDT = b"ENDT"   # end of record

OFFT_MIN_LENGTH = 24
OFFT_BODY_OFFSET_SLOT = slice(16, 24)
