"""Content archive codec."""

from .format import FORMAT_VERSION, HEADER_SIZE, BlockHeader, build_header, parse_header
from .reader import ArchiveBlock, iter_blocks, read_blocks, summarize_archive
from .writer import AppendResult, ArchiveWriter

__all__ = [
    "FORMAT_VERSION",
    "HEADER_SIZE",
    "BlockHeader",
    "build_header",
    "parse_header",
    "ArchiveBlock",
    "iter_blocks",
    "read_blocks",
    "summarize_archive",
    "AppendResult",
    "ArchiveWriter",
]
