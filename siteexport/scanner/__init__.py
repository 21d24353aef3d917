"""Scanner module for content tree enumeration."""

from .enumerator import FileEnumerator
from .exclusions import ExclusionFilter
from .filesystem import parse_filename, walk_files
from .manifest import ManifestReader, ManifestWriter, validate_manifest
from .models import ManifestEntry
from .progress import EnumerationStats, ProgressReporter

__all__ = [
    "FileEnumerator",
    "ExclusionFilter",
    "parse_filename",
    "walk_files",
    "ManifestReader",
    "ManifestWriter",
    "validate_manifest",
    "ManifestEntry",
    "EnumerationStats",
    "ProgressReporter",
]
