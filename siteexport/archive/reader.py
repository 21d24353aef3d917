"""Sequential reading of content archives for listing and verification."""

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from siteexport.archive.format import HEADER_SIZE, BlockHeader, parse_header

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveBlock:
    header: BlockHeader
    offset: int

    @property
    def content_offset(self) -> int:
        return self.offset + HEADER_SIZE

    @property
    def end_offset(self) -> int:
        return self.content_offset + self.header.size


@dataclass
class ArchiveSummary:
    blocks: int = 0
    content_bytes: int = 0
    trailing_bytes: int = 0

    @property
    def complete(self) -> bool:
        return self.trailing_bytes == 0


def iter_blocks(path: Path) -> Iterator[ArchiveBlock]:
    """Yield block headers in order without reading file content.

    Iteration stops at the first header or content that is cut short.
    """
    file_size = os.path.getsize(path)
    with open(path, "rb") as f:
        offset = 0
        while True:
            raw = f.read(HEADER_SIZE)
            if len(raw) < HEADER_SIZE:
                if raw:
                    logger.warning("Incomplete header at offset %d in %s", offset, path)
                return
            block = ArchiveBlock(header=parse_header(raw), offset=offset)
            if block.end_offset > file_size:
                logger.warning("Truncated content for %s in %s", block.header.relative_path, path)
                return
            yield block
            offset = block.end_offset
            f.seek(offset)


def read_blocks(path: Path) -> Iterator[tuple[BlockHeader, bytes]]:
    """Yield (header, content) pairs. Content is held in memory; meant for small archives."""
    with open(path, "rb") as f:
        for block in iter_blocks(path):
            f.seek(block.content_offset)
            yield block.header, f.read(block.header.size)


def summarize_archive(path: Path) -> ArchiveSummary:
    summary = ArchiveSummary()
    end = 0
    for block in iter_blocks(path):
        summary.blocks += 1
        summary.content_bytes += block.header.size
        end = block.end_offset
    summary.trailing_bytes = os.path.getsize(path) - end
    return summary
