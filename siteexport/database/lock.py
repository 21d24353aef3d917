"""Advisory lease that keeps two database dumps from running at once."""

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

import psutil
from filelock import SoftFileLock, Timeout

from siteexport.state.jsonfile import read_json, remove_file, write_json_atomic
from siteexport.state.models import LeaseRecord

logger = logging.getLogger(__name__)

OWNER_SUFFIX = ".owner.json"


class DatabaseExportLock:
    """Disk-based lease with age-based staleness.

    The lock file itself is a SoftFileLock; the lease record (start time,
    last heartbeat, pid) lives in an ``.owner.json`` sidecar. A lease is
    stale when its holder has not reported progress for ``stale_after``
    seconds or its process no longer exists. There is no fencing token: a
    holder that stalls past ``stale_after`` and then resumes can overlap
    with the process that reclaimed its lease.
    """

    def __init__(
        self,
        path: Path,
        stale_after: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.path = path
        self.owner_path = path.with_name(path.name + OWNER_SUFFIX)
        self.stale_after = stale_after
        self.clock = clock
        self._lock = SoftFileLock(str(path))
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """Take the lease without waiting. False if another holder is active."""
        if self._try_acquire():
            return True

        if not self._cleanup_if_stale():
            return False
        return self._try_acquire()

    def _try_acquire(self) -> bool:
        try:
            self._lock.acquire(blocking=False)
        except Timeout:
            return False

        now = self.clock()
        write_json_atomic(self.owner_path, LeaseRecord(started=now, last_update=now, pid=os.getpid()).to_dict())
        self._held = True
        logger.debug("Database export lock acquired by pid %d", os.getpid())
        return True

    def _cleanup_if_stale(self) -> bool:
        record = self.read()
        age = self.age_seconds()
        owner_gone = record is not None and not psutil.pid_exists(record.pid)

        if not owner_gone and age is not None and age < self.stale_after:
            logger.info("Database export already in progress (lock updated %.0fs ago)", age)
            return False

        if owner_gone:
            logger.warning("Reclaiming database export lock of exited process %d", record.pid)
        else:
            logger.warning(
                "Reclaiming stale database export lock (no progress for %s seconds)",
                "unknown" if age is None else f"{age:.0f}",
            )
        remove_file(self.owner_path)
        remove_file(self.path)
        return True

    def read(self) -> LeaseRecord | None:
        try:
            data = read_json(self.owner_path)
            return LeaseRecord.from_dict(data) if data is not None else None
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def age_seconds(self) -> float | None:
        """Seconds since the holder last reported progress."""
        record = self.read()
        if record is not None:
            return self.clock() - record.last_update
        try:
            return self.clock() - self.path.stat().st_mtime
        except FileNotFoundError:
            return None

    def heartbeat(self) -> None:
        if not self._held:
            return
        record = self.read()
        if record is None or record.pid != os.getpid():
            logger.warning("Database export lock was taken over by another process")
            return
        record.last_update = self.clock()
        write_json_atomic(self.owner_path, record.to_dict())

    def release(self) -> None:
        if self._held:
            remove_file(self.owner_path)
            self._lock.release()
            self._held = False

    def break_lock(self) -> None:
        """Remove the lock regardless of owner."""
        remove_file(self.owner_path)
        if remove_file(self.path):
            logger.info("Database export lock removed")
        self._held = False
