"""Archive pass over the manifest with checkpointed pause and resume."""

import logging
import time
from pathlib import Path

from siteexport.archive.writer import DEFAULT_CHUNK_SIZE, ArchiveWriter
from siteexport.errors import ManifestError
from siteexport.exporter.models import StepOutcome
from siteexport.scanner.manifest import ManifestReader, validate_manifest
from siteexport.scanner.progress import ProgressReporter, format_bytes
from siteexport.state.budget import PauseController
from siteexport.state.checkpoint import CheckpointStore
from siteexport.state.models import CheckpointRecord
from siteexport.state.status import StatusFile

logger = logging.getLogger(__name__)


class ContentExporter:
    """Copies every manifest entry into the archive, pausing between entries.

    The only place an invocation yields is after an entry is fully written.
    Before a checkpoint is saved the archive handle is synced and closed, so
    the saved archive offset always equals the archive's length on disk.
    """

    def __init__(
        self,
        manifest_path: Path,
        archive_path: Path,
        checkpoints: CheckpointStore,
        pause: PauseController,
        status: StatusFile | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress_interval: int = 1000,
    ):
        self.manifest_path = manifest_path
        self.archive_path = archive_path
        self.checkpoints = checkpoints
        self.pause = pause
        self.status = status
        self.chunk_size = chunk_size
        self.progress = ProgressReporter(interval=progress_interval)

    def run(self) -> StepOutcome:
        record = self.checkpoints.load()
        writer = ArchiveWriter(self.archive_path, self.chunk_size)

        if record is None:
            validation = validate_manifest(self.manifest_path)
            if not validation.valid:
                raise ManifestError("; ".join(validation.errors) or "Manifest is not valid")
            writer.open_new()
            record = CheckpointRecord()
            logger.info("Exporting %d files to %s", validation.line_count, self.archive_path.name)
        else:
            writer.open_append(record.archive_write_offset)
            logger.info(
                "Resuming archive at file %d (manifest offset %d, archive offset %d)",
                record.files_processed + record.skipped_count + 1,
                record.manifest_read_offset,
                record.archive_write_offset,
            )

        start_time = time.time()
        files_since_batch = 0
        try:
            with ManifestReader(self.manifest_path, record.manifest_read_offset) as reader:
                for entry in reader:
                    result = writer.append_file(entry)
                    if result.success:
                        record.files_processed += 1
                        record.bytes_processed += result.bytes_written
                    else:
                        record.skipped_count += 1
                    record.manifest_read_offset = reader.offset
                    record.archive_write_offset = writer.offset
                    files_since_batch += 1
                    self._report_progress(files_since_batch, record, start_time)

                    if reader.at_end:
                        break

                    reason = self.pause.should_pause(files_since_batch)
                    if reason is not None:
                        writer.close()
                        self.checkpoints.save(record, self.archive_path)
                        logger.info(
                            "Pausing export (%s) after %d files (%s); %d skipped",
                            reason.value,
                            record.files_processed,
                            format_bytes(record.bytes_processed),
                            record.skipped_count,
                        )
                        return StepOutcome.paused(reason)
        finally:
            writer.close()

        self.checkpoints.clear()
        logger.info(
            "Exported %d files (%s), skipped %d files",
            record.files_processed,
            format_bytes(record.bytes_processed),
            record.skipped_count,
        )
        return StepOutcome.done()

    def _report_progress(self, files_since_batch: int, record: CheckpointRecord, start_time: float) -> None:
        if not self.progress.due(files_since_batch):
            return
        elapsed = max(time.time() - start_time, 0.1)
        logger.info(
            "Processed %d files (%s). Rate: %.2f files/sec",
            record.files_processed,
            format_bytes(record.bytes_processed),
            files_since_batch / elapsed,
        )
        if self.status is not None:
            self.status.touch()
