"""Ways of getting the export invoked again after it yields."""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class ContinuationTrigger(Protocol):
    def schedule(self, reason: str, delay: float = 0.0) -> None: ...


class NullTrigger:
    """Leaves re-invocation to whatever scheduler called the exporter."""

    def schedule(self, reason: str, delay: float = 0.0) -> None:
        logger.debug("Continuation requested (%s); waiting for external trigger", reason)


class SubprocessTrigger:
    """Starts a detached ``siteexport resume`` process for the next step."""

    def __init__(self, export_dir: Path, python: str | None = None):
        self.export_dir = export_dir
        self.python = python or sys.executable

    def command(self, delay: float = 0.0) -> list[str]:
        cmd = [
            self.python,
            "-m",
            "siteexport",
            "resume",
            "--export-dir",
            str(self.export_dir),
            "--spawn",
        ]
        if delay > 0:
            cmd += ["--delay", str(delay)]
        return cmd

    def schedule(self, reason: str, delay: float = 0.0) -> None:
        cmd = self.command(delay)
        subprocess.Popen(  # pylint: disable=consider-using-with
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )
        logger.info("Scheduled continuation (%s)", reason)
