"""Single-line status file polled by the status-reporting layer."""

import logging
import os
import time
from pathlib import Path

from siteexport.state.jsonfile import remove_file, write_text_atomic
from siteexport.state.models import ExportStatus

logger = logging.getLogger(__name__)

ERROR_PREFIX = "error:"


class StatusFile:
    def __init__(self, path: Path):
        self.path = path

    def write(self, status: ExportStatus, message: str | None = None) -> str:
        if status is ExportStatus.ERROR:
            text = f"{ERROR_PREFIX} {message or 'unknown error'}"
        else:
            text = status.value
        write_text_atomic(self.path, text, errors="surrogateescape")
        logger.info("Export status: %s", text)
        return text

    def read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8", errors="surrogateescape").strip()
        except FileNotFoundError:
            return None

    def current(self) -> tuple[ExportStatus | None, str | None]:
        """Parsed status and, for errors, the message."""
        text = self.read()
        if text is None:
            return None, None
        if text.startswith(ERROR_PREFIX):
            return ExportStatus.ERROR, text[len(ERROR_PREFIX) :].strip()
        try:
            return ExportStatus(text), None
        except ValueError:
            logger.warning("Unknown status in %s: %s", self.path, text)
            return None, None

    def touch(self) -> None:
        """Record activity without changing the status."""
        if self.path.exists():
            os.utime(self.path)

    def age_seconds(self) -> float | None:
        try:
            return time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def clear(self) -> None:
        remove_file(self.path)
