"""Builds the durable file manifest for an export."""

import logging
import os
import time
from pathlib import Path

from siteexport.errors import ManifestError, SourceNotAccessibleError
from siteexport.scanner.exclusions import ExclusionFilter
from siteexport.scanner.filesystem import walk_files
from siteexport.scanner.manifest import ManifestWriter
from siteexport.scanner.models import ManifestEntry
from siteexport.scanner.progress import EnumerationStats, ProgressReporter

logger = logging.getLogger(__name__)

_EXCLUDED = object()


class FileEnumerator:
    """Walks the content tree once and records every exportable file.

    The manifest is written to a temporary sibling and renamed into place
    only after the walk finishes, so an existing manifest is always complete
    and can be reused by later invocations instead of walking again.
    """

    def __init__(
        self,
        exclusion_filter: ExclusionFilter,
        base_path_name: str,
        progress_interval: int = 5000,
    ):
        self.exclusion_filter = exclusion_filter
        self.base_path_name = base_path_name.strip("/")
        self.progress = ProgressReporter(interval=progress_interval)

    def enumerate(self, source_dir: Path, manifest_path: Path) -> EnumerationStats:
        source_dir = Path(os.path.abspath(source_dir))
        if not source_dir.is_dir() or not os.access(source_dir, os.R_OK | os.X_OK):
            raise SourceNotAccessibleError(f"Source directory is not accessible: {source_dir}")

        logger.info("Starting file enumeration of %s", source_dir)
        stats = EnumerationStats()
        source_real = os.path.realpath(source_dir)
        partial_path = manifest_path.with_name(manifest_path.name + ".partial")

        def on_error(path: str, error: OSError) -> None:
            stats.errors += 1

        with ManifestWriter(partial_path) as writer:
            for entry in walk_files(source_dir, on_error=on_error):
                result = self._process_entry(entry, str(source_dir), source_real, stats)
                if result is _EXCLUDED:
                    stats.files_excluded += 1
                    continue
                if result is None:
                    continue

                writer.write(result)
                stats.files_found += 1
                stats.total_size += result.size_bytes
                self.progress.report_enumeration(stats)

        try:
            os.replace(partial_path, manifest_path)
        except OSError as e:
            raise ManifestError(f"Cannot finalize manifest file {manifest_path}: {e}") from e

        stats.elapsed_seconds = time.time() - stats.start_time
        self.progress.report_enumeration_complete(stats)
        return stats

    def _process_entry(
        self,
        entry: os.DirEntry,
        source_dir: str,
        source_real: str,
        stats: EnumerationStats,
    ) -> ManifestEntry | object | None:
        try:
            real_path = os.path.realpath(entry.path)
            if entry.is_symlink():
                if not os.path.exists(real_path):
                    logger.warning("Skipping dangling symlink: %s", entry.path)
                    stats.errors += 1
                    return None
                if not os.path.isfile(real_path):
                    return None
            elif not entry.is_file(follow_symlinks=False):
                return None

            if self.exclusion_filter.is_excluded(real_path):
                return _EXCLUDED

            stat_result = os.stat(real_path)
            if not os.access(real_path, os.R_OK):
                logger.warning("Skipping unreadable file: %s", real_path)
                stats.errors += 1
                return None

            return ManifestEntry(
                absolute_path=real_path,
                relative_path=self.relative_path(real_path, entry.path, source_dir, source_real),
                size_bytes=stat_result.st_size,
                mtime=int(stat_result.st_mtime),
            )

        except FileNotFoundError:
            logger.warning("File disappeared during enumeration: %s", entry.path)
            stats.errors += 1
        except PermissionError:
            logger.warning("Permission denied: %s", entry.path)
            stats.errors += 1
        except OSError as e:
            logger.error("Error processing %s: %s", entry.path, e)
            stats.errors += 1
        return None

    def relative_path(self, real_path: str, walked_path: str, source_dir: str, source_real: str) -> str:
        """Path of a file below the base path name, independent of the host layout.

        The resolved source prefix is stripped when it matches. Otherwise
        (mount points reached through different prefixes, such as /bitnami
        versus /opt/bitnami) the source directory's own name is located in
        the path and used as the anchor. Files that resolve outside the tree
        keep the location they were found at.
        """
        if real_path.startswith(source_real + os.sep):
            relative = real_path[len(source_real) + 1 :]
        else:
            anchor = os.sep + os.path.basename(source_real) + os.sep
            position = real_path.find(anchor)
            if position != -1:
                relative = real_path[position + len(anchor) :]
            else:
                relative = os.path.relpath(walked_path, source_dir)

        return f"{self.base_path_name}/{relative.replace(os.sep, '/')}"
