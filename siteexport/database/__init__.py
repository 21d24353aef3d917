"""Database module for siteexport."""

from .connection import Database
from .dumper import DatabaseDumper, is_dump_complete
from .lock import DatabaseExportLock

__all__ = [
    "Database",
    "DatabaseDumper",
    "DatabaseExportLock",
    "is_dump_complete",
]
