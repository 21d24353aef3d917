"""Line-oriented file manifest with byte-offset resume support.

Each record is a CSV row ``absolute_path,relative_path,size_bytes,mtime``.
Paths are written as UTF-8 with surrogateescape so undecodable filenames
survive the round trip. A quoted field may contain a newline, so readers
reassemble physical lines until the record's quotes balance.
"""

import csv
import io
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from siteexport.errors import ManifestError
from siteexport.scanner.models import ManifestEntry

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"
FIELD_COUNT = 4


class ManifestWriter:
    """Appends manifest rows to a file without buffering the whole list."""

    def __init__(self, path: Path):
        self.path = path
        self.count = 0
        self._handle: io.TextIOWrapper | None = None
        self._writer = None

    def open(self) -> None:
        try:
            self._handle = open(
                self.path, "w", encoding=ENCODING, errors=ENCODING_ERRORS, newline=""
            )
        except OSError as e:
            raise ManifestError(f"Cannot create manifest file {self.path}: {e}") from e
        self._writer = csv.writer(self._handle, lineterminator="\n")

    def write(self, entry: ManifestEntry) -> None:
        if self._writer is None:
            raise ManifestError("Manifest writer is not open")
        self._writer.writerow(
            [entry.absolute_path, entry.relative_path, entry.size_bytes, entry.mtime]
        )
        self.count += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
            self._handle = None
            self._writer = None

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ManifestReader:
    """Reads manifest entries sequentially, tracking the byte offset.

    After an entry is yielded, ``offset`` points at the first byte of the
    next record, so it can be persisted and handed back to a later reader.
    """

    def __init__(self, path: Path, offset: int = 0):
        self.path = path
        self.offset = offset
        self._handle = None
        self._size = 0

    def open(self) -> None:
        try:
            self._handle = open(self.path, "rb")
        except OSError as e:
            raise ManifestError(f"Cannot open manifest file {self.path}: {e}") from e
        self._size = os.fstat(self._handle.fileno()).st_size
        if self.offset > self._size:
            self.close()
            raise ManifestError(
                f"Manifest offset {self.offset} is beyond the end of {self.path} ({self._size} bytes)"
            )
        self._handle.seek(self.offset)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    @property
    def at_end(self) -> bool:
        return self.offset >= self._size

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[ManifestEntry]:
        if self._handle is None:
            raise ManifestError("Manifest reader is not open")
        while True:
            record = self._read_record()
            if record is None:
                return
            entry = _parse_record(record, self.offset)
            self.offset += len(record)
            yield entry

    def _read_record(self) -> bytes | None:
        record = b""
        while True:
            line = self._handle.readline()
            if not line:
                if record:
                    raise ManifestError(f"Truncated manifest record at offset {self.offset}")
                return None
            record += line
            if record.count(b'"') % 2 == 0:
                return record


def _parse_record(record: bytes, offset: int) -> ManifestEntry:
    text = record.decode(ENCODING, ENCODING_ERRORS)
    try:
        row = next(csv.reader(io.StringIO(text)))
    except (csv.Error, StopIteration) as e:
        raise ManifestError(f"Malformed manifest record at offset {offset}: {e}") from e

    if len(row) != FIELD_COUNT:
        raise ManifestError(
            f"Malformed manifest record at offset {offset}: expected {FIELD_COUNT} fields, got {len(row)}"
        )

    try:
        size = int(row[2])
        mtime = int(row[3])
    except ValueError as e:
        raise ManifestError(f"Malformed manifest record at offset {offset}: {e}") from e

    return ManifestEntry(absolute_path=row[0], relative_path=row[1], size_bytes=size, mtime=mtime)


def count_manifest_entries(path: Path) -> int:
    if not path.exists():
        return 0
    with ManifestReader(path) as reader:
        return sum(1 for _ in reader)


@dataclass
class ManifestValidation:
    """Result of sampling a manifest for structural validity."""

    valid: bool = False
    line_count: int = 0
    errors: list[str] = field(default_factory=list)
    sample: list[ManifestEntry] = field(default_factory=list)


def validate_manifest(path: Path, sample_limit: int = 1000) -> ManifestValidation:
    """Check that the first sample_limit records parse cleanly."""
    validation = ManifestValidation()

    if not path.exists():
        validation.errors.append(f"Manifest file does not exist: {path}")
        return validation

    sampled = 0
    try:
        with ManifestReader(path) as reader:
            for entry in reader:
                sampled += 1
                if len(validation.sample) < 5:
                    validation.sample.append(entry)
                if sampled >= sample_limit:
                    break
    except ManifestError as e:
        validation.errors.append(str(e))
        return validation

    validation.line_count = count_manifest_entries(path)
    validation.valid = True
    return validation
