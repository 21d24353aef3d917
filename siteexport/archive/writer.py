"""Appends files to a content archive."""

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Self

from siteexport.archive.format import build_header, split_relative_path
from siteexport.errors import ArchiveOpenError, ArchiveWriteError, CheckpointMismatchError, HeaderError
from siteexport.scanner.models import ManifestEntry

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 512 * 1024


@dataclass
class AppendResult:
    """Outcome of archiving one manifest entry."""

    success: bool
    bytes_written: int = 0
    error: str | None = None


class ArchiveWriter:
    """Streams files into the archive one block at a time.

    The archive is opened unbuffered so that ``offset`` always equals the
    number of bytes handed to the operating system. A block that cannot be
    completed (read error, file shrinking mid-copy, failed write) is cut
    off again before the next block starts, which keeps the archive
    parseable block by block at every point a checkpoint can be taken.
    """

    def __init__(self, path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.path = path
        self.chunk_size = chunk_size
        self._handle = None
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    def open_new(self) -> None:
        try:
            self._handle = open(self.path, "wb", buffering=0)
        except OSError as e:
            raise ArchiveOpenError(f"Cannot create archive file {self.path}: {e}") from e
        self._offset = 0

    def open_append(self, expected_offset: int) -> None:
        """Reopen an existing archive, refusing if it has drifted from the checkpoint."""
        try:
            self._handle = open(self.path, "ab", buffering=0)
        except OSError as e:
            raise ArchiveOpenError(f"Cannot open archive file {self.path}: {e}") from e

        actual = os.fstat(self._handle.fileno()).st_size
        if actual != expected_offset:
            self._handle.close()
            self._handle = None
            raise CheckpointMismatchError(
                f"Archive {self.path.name} is {actual} bytes but the checkpoint expects "
                f"{expected_offset}; start a fresh export"
            )
        self._offset = actual

    def append_file(self, entry: ManifestEntry) -> AppendResult:
        if self._handle is None:
            raise ArchiveOpenError("Archive writer is not open")

        path = entry.absolute_path
        try:
            stat_result = os.stat(path)
        except FileNotFoundError:
            logger.warning("File disappeared before archiving: %s", path)
            return AppendResult(success=False, error="file not found")
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return AppendResult(success=False, error=str(e))

        if not stat.S_ISREG(stat_result.st_mode):
            logger.warning("No longer a regular file, skipping: %s", path)
            return AppendResult(success=False, error="not a regular file")

        size = stat_result.st_size
        if size != entry.size_bytes:
            logger.info(
                "Size of %s changed since enumeration: %d -> %d bytes",
                entry.relative_path,
                entry.size_bytes,
                size,
            )

        directory, filename = split_relative_path(entry.relative_path)
        try:
            header = build_header(filename, size, int(stat_result.st_mtime), directory)
        except HeaderError as e:
            logger.error("Skipping %s: %s", entry.relative_path, e)
            return AppendResult(success=False, error=str(e))

        try:
            source = open(path, "rb")
        except OSError as e:
            logger.warning("Cannot open %s for reading: %s", path, e)
            return AppendResult(success=False, error=str(e))

        block_start = self._offset
        with source:
            try:
                self._write_all(header)
            except OSError as e:
                logger.error("Failed writing header for %s: %s", entry.relative_path, e)
                self._rollback(block_start)
                return AppendResult(success=False, error=str(e))

            written = 0
            remaining = size
            try:
                while remaining > 0:
                    chunk = source.read(min(self.chunk_size, remaining))
                    if not chunk:
                        break
                    self._write_all(chunk)
                    written += len(chunk)
                    remaining -= len(chunk)
            except OSError as e:
                logger.error(
                    "Failed copying %s after %d bytes: %s", entry.relative_path, written, e
                )
                self._rollback(block_start)
                return AppendResult(success=False, bytes_written=written, error=str(e))

        if remaining > 0:
            logger.warning(
                "File %s shrank while archiving: expected %d bytes, read %d",
                entry.relative_path,
                size,
                written,
            )
            self._rollback(block_start)
            return AppendResult(success=False, bytes_written=written, error="file shrank")

        return AppendResult(success=True, bytes_written=written)

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            count = self._handle.write(view)
            if count is None or count <= 0:
                raise OSError(f"Short write to {self.path}")
            self._offset += count
            view = view[count:]

    def _rollback(self, block_start: int) -> None:
        try:
            os.ftruncate(self._handle.fileno(), block_start)
            self._handle.seek(block_start)
        except OSError as e:
            raise ArchiveWriteError(
                f"Cannot remove partial block at offset {block_start} from {self.path.name}: {e}"
            ) from e
        self._offset = block_start
        logger.debug("Rolled back partial block at offset %d", block_start)

    def sync(self) -> None:
        if self._handle is not None:
            os.fsync(self._handle.fileno())

    def close(self) -> None:
        if self._handle is not None:
            self.sync()
            self._handle.close()
            self._handle = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
