"""Data models shared by the scanner and the archive writer."""

from dataclasses import dataclass


@dataclass
class ParsedFilename:
    """Parsed components of a filename."""

    full: str
    base: str
    extension: str | None


@dataclass(frozen=True)
class ManifestEntry:
    """One file scheduled for archiving.

    relative_path is rooted at the export's base path name (for example
    ``wp-content/uploads/logo.png``) regardless of where the tree lives on
    the exporting host.
    """

    absolute_path: str
    relative_path: str
    size_bytes: int
    mtime: int
