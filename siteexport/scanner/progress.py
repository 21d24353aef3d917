"""Progress reporting utilities for long-running passes."""

import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class EnumerationStats:
    """Statistics for a manifest build."""

    files_found: int = 0
    files_excluded: int = 0
    total_size: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.time)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "files_found": self.files_found,
            "files_excluded": self.files_excluded,
            "total_size": self.total_size,
            "errors": self.errors,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class ProgressReporter:
    """Logs progress every `interval` items."""

    def __init__(self, interval: int = 1000):
        self.interval = max(1, interval)
        self._last_report_count = 0

    def due(self, count: int) -> bool:
        if count - self._last_report_count >= self.interval:
            self._last_report_count = count
            return True
        return False

    def report_enumeration(self, stats: EnumerationStats) -> None:
        if not self.due(stats.files_found):
            return
        elapsed = time.time() - stats.start_time
        logger.info(
            "Enumeration progress: %d files found, %d excluded, %s total size (%.1f files/sec)",
            stats.files_found,
            stats.files_excluded,
            format_bytes(stats.total_size),
            stats.files_found / max(elapsed, 0.1),
        )

    def report_enumeration_complete(self, stats: EnumerationStats) -> None:
        logger.info(
            "File enumeration completed: %d files found, %d excluded, %d errors, %s total size in %s",
            stats.files_found,
            stats.files_excluded,
            stats.errors,
            format_bytes(stats.total_size),
            format_duration(stats.elapsed_seconds),
        )


def format_duration(seconds: float) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_bytes(size: int | None) -> str:
    if size is None:
        return "0 B"
    size_f = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_f < 1024:
            return f"{size_f:.2f} {unit}"
        size_f /= 1024
    return f"{size_f:.2f} PB"
