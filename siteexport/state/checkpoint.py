"""Durable resume checkpoint for the archive pass."""

import json
import logging
import os
import time
from pathlib import Path

from siteexport.errors import CheckpointMismatchError
from siteexport.state.jsonfile import read_json, remove_file, write_json_atomic
from siteexport.state.models import CHECKPOINT_FORMAT_VERSION, CheckpointRecord

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Saves and loads the CheckpointRecord of the current export."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> CheckpointRecord | None:
        try:
            data = read_json(self.path)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Discarding unreadable checkpoint %s: %s", self.path, e)
            self.clear()
            return None

        if data is None:
            return None

        try:
            record = CheckpointRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed checkpoint %s: %s", self.path, e)
            self.clear()
            return None

        if record.format_version != CHECKPOINT_FORMAT_VERSION:
            logger.warning(
                "Discarding checkpoint written by format version %d (current: %d)",
                record.format_version,
                CHECKPOINT_FORMAT_VERSION,
            )
            self.clear()
            return None

        return record

    def save(self, record: CheckpointRecord, archive_path: Path) -> None:
        """Persist record once the archive on disk matches its write offset.

        Callers close (or fsync) the archive first; a disagreement here
        means bytes were written that the checkpoint would not account for.
        """
        actual = os.path.getsize(archive_path)
        if actual != record.archive_write_offset:
            raise CheckpointMismatchError(
                f"Refusing to save checkpoint: archive is {actual} bytes, "
                f"offset is {record.archive_write_offset}"
            )

        record.last_update = time.time()
        write_json_atomic(self.path, record.to_dict())
        logger.debug(
            "Checkpoint saved: manifest offset %d, archive offset %d, %d files",
            record.manifest_read_offset,
            record.archive_write_offset,
            record.files_processed,
        )

    def clear(self) -> None:
        if remove_file(self.path):
            logger.debug("Checkpoint removed: %s", self.path)

    def exists(self) -> bool:
        return self.path.exists()
