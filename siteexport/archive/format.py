"""Binary block format of the content archive (format version SITEX-1).

An archive is a plain sequence of blocks. Each block is a fixed-width
header followed immediately by the file's raw content::

    filename  255 bytes   UTF-8, NUL padded
    size        4 bytes   unsigned little-endian content length
    mtime       4 bytes   unsigned little-endian unix seconds
    dir      4112 bytes   UTF-8 parent path, NUL padded

There are no delimiters; the next header starts ``size`` bytes after the
end of the previous one.
"""

import posixpath
import struct
from dataclasses import dataclass

from siteexport.errors import HeaderError

FORMAT_VERSION = "SITEX-1"
FILE_EXTENSION = "sxa"

FILENAME_FIELD_SIZE = 255
DIR_FIELD_SIZE = 4112
HEADER_STRUCT = struct.Struct(f"<{FILENAME_FIELD_SIZE}sII{DIR_FIELD_SIZE}s")
HEADER_SIZE = HEADER_STRUCT.size

MAX_CONTENT_SIZE = 0xFFFFFFFF
MAX_MTIME = 0xFFFFFFFF

ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"


@dataclass(frozen=True)
class BlockHeader:
    filename: str
    size: int
    mtime: int
    directory: str

    @property
    def relative_path(self) -> str:
        if not self.directory:
            return self.filename
        return f"{self.directory}/{self.filename}"


def split_relative_path(relative_path: str) -> tuple[str, str]:
    """Split an archive path into (directory, filename)."""
    directory, filename = posixpath.split(relative_path)
    return directory, filename


def encode_field(value: str, width: int) -> bytes:
    """Encode value for a NUL padded field, keeping at least one NUL."""
    data = value.encode(ENCODING, ENCODING_ERRORS)
    return _truncate_utf8(data, width - 1)


def _truncate_utf8(data: bytes, limit: int) -> bytes:
    if len(data) <= limit:
        return data
    end = limit
    # Step back to the lead byte of a character cut in half.
    steps = 0
    while end > 0 and steps < 3 and (data[end] & 0xC0) == 0x80:
        end -= 1
        steps += 1
    return data[:end]


def build_header(filename: str, size: int, mtime: int, directory: str) -> bytes:
    if size < 0 or size > MAX_CONTENT_SIZE:
        raise HeaderError(f"File size {size} cannot be stored in a {FORMAT_VERSION} block: {filename}")

    mtime = min(max(int(mtime), 0), MAX_MTIME)
    header = HEADER_STRUCT.pack(
        encode_field(filename, FILENAME_FIELD_SIZE),
        size,
        mtime,
        encode_field(directory, DIR_FIELD_SIZE),
    )

    if len(header) != HEADER_SIZE:
        raise HeaderError(
            f"Header size mismatch for {filename}. Expected: {HEADER_SIZE}, Got: {len(header)}"
        )
    return header


def parse_header(block: bytes) -> BlockHeader:
    if len(block) != HEADER_SIZE:
        raise HeaderError(f"Header must be {HEADER_SIZE} bytes, got {len(block)}")

    filename, size, mtime, directory = HEADER_STRUCT.unpack(block)
    return BlockHeader(
        filename=filename.rstrip(b"\0").decode(ENCODING, ENCODING_ERRORS),
        size=size,
        mtime=mtime,
        directory=directory.rstrip(b"\0").decode(ENCODING, ENCODING_ERRORS),
    )
