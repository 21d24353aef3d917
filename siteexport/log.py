"""Export log artifact handling."""

import logging
from collections import deque
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ExportLog:
    """Appends records from the siteexport logger to the export's log file."""

    def __init__(self, path: Path, level: int = logging.INFO):
        self.path = path
        self.level = level
        self._handler: logging.FileHandler | None = None

    def attach(self) -> None:
        if self._handler is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, encoding="utf-8", errors="backslashreplace")
        handler.setLevel(self.level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        package_logger = logging.getLogger("siteexport")
        if package_logger.level == logging.NOTSET or package_logger.level > self.level:
            package_logger.setLevel(self.level)
        package_logger.addHandler(handler)
        self._handler = handler

    def detach(self) -> None:
        if self._handler is None:
            return
        logging.getLogger("siteexport").removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> "ExportLog":
        self.attach()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.detach()


def recent_log_lines(path: Path, count: int = 5) -> list[str]:
    if not path.exists():
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]
