"""Filesystem traversal utilities for enumerating directories."""

import logging
import os
from collections.abc import Callable, Iterator
from pathlib import Path

from siteexport.scanner.models import ParsedFilename

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, OSError], None]


def parse_filename(filename: str) -> ParsedFilename:
    if not filename:
        return ParsedFilename(full=filename, base=filename, extension=None)

    dot_index = filename.rfind(".")

    if dot_index <= 0 or dot_index == len(filename) - 1:
        return ParsedFilename(full=filename, base=filename.rstrip("."), extension=None)

    extension = filename[dot_index + 1 :].lower()
    base = filename[:dot_index]

    return ParsedFilename(full=filename, base=base, extension=extension)


def walk_files(root: Path | str, on_error: ErrorCallback | None = None) -> Iterator[os.DirEntry]:
    """Yield every non-directory entry below root in a stable order.

    Entries of a directory are yielded alphabetically before its
    subdirectories are visited. Symlinked directories are not followed.
    Unreadable directories are reported through on_error and skipped.
    """
    yield from _walk_recursive(str(root), on_error)


def _walk_recursive(directory: str, on_error: ErrorCallback | None) -> Iterator[os.DirEntry]:
    entries = _list_entries(directory, on_error)
    subdirs: list[str] = []

    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(entry.path)
                continue
        except OSError as e:
            logger.error("Error inspecting %s: %s", entry.path, e)
            _report(on_error, entry.path, e)
            continue
        yield entry

    for subdir in subdirs:
        yield from _walk_recursive(subdir, on_error)


def _list_entries(directory: str, on_error: ErrorCallback | None) -> list[os.DirEntry]:
    try:
        with os.scandir(directory) as entries:
            return sorted(entries, key=lambda e: e.name)
    except PermissionError as e:
        logger.warning("Permission denied listing directory: %s", directory)
        _report(on_error, directory, e)
    except OSError as e:
        logger.error("Error listing directory %s: %s", directory, e)
        _report(on_error, directory, e)
    return []


def _report(on_error: ErrorCallback | None, path: str, error: OSError) -> None:
    if on_error is not None:
        on_error(path, error)
