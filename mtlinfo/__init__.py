"""mtlinfo – read entry indexes and bitcode bodies from Apple .metallib files."""

__version__ = "0.1.0"

from .format import MAGIC, TAG_ENDT, TAG_MDSZ, TAG_NAME, TAG_OFFT
from .reader import (
    DecodeError,
    EndTag,
    EntryStream,
    HeaderInformation,
    MetalLibError,
    MetalLibrary,
    MetalLibraryEntry,
    NameTag,
    NotMetalLibraryError,
    OffsetTag,
    OtherTag,
    Parser,
    SizeTag,
    Tag,
    TruncatedError,
    decode_header,
    is_metal_library,
    next_entry,
    next_tag,
)
from .index import dump_index, library_to_dict, load_index

__all__ = [
    "__version__",
    "MAGIC", "TAG_ENDT", "TAG_MDSZ", "TAG_NAME", "TAG_OFFT",
    "Parser", "MetalLibrary", "MetalLibraryEntry", "HeaderInformation",
    "Tag", "NameTag", "SizeTag", "OffsetTag", "EndTag", "OtherTag",
    "EntryStream", "is_metal_library", "decode_header", "next_tag", "next_entry",
    "MetalLibError", "TruncatedError", "NotMetalLibraryError", "DecodeError",
    "dump_index", "library_to_dict", "load_index",
]
