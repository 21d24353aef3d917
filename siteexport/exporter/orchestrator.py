"""Step state machine driving an export across many short invocations."""

import logging
import secrets
import sqlite3
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from siteexport.config import ExportConfig
from siteexport.database import Database, DatabaseDumper, DatabaseExportLock
from siteexport.database.dumper import dump_candidates, is_dump_complete
from siteexport.errors import (
    DatabaseExportError,
    FatalExportError,
    MissingArtifactsError,
    NoExportError,
)
from siteexport.exporter.content import ContentExporter
from siteexport.exporter.environment import raise_resource_limits
from siteexport.exporter.metadata import MetadataCollector, SiteMetadataCollector
from siteexport.exporter.models import RunResult, StatusReport, StepOutcome
from siteexport.exporter.triggers import ContinuationTrigger, NullTrigger
from siteexport.log import ExportLog, recent_log_lines
from siteexport.scanner.enumerator import FileEnumerator
from siteexport.scanner.exclusions import ExclusionFilter
from siteexport.scanner.progress import format_bytes
from siteexport.state.budget import PauseController
from siteexport.state.checkpoint import CheckpointStore
from siteexport.state.jsonfile import remove_file, write_json_atomic
from siteexport.state.models import (
    IN_PROGRESS_STATUSES,
    STEP_ORDER,
    ExportState,
    ExportStatus,
    ExportStep,
    PauseReason,
)
from siteexport.state.status import StatusFile
from siteexport.state.store import ExportLayout, StateStore, generate_artifact_names

logger = logging.getLogger(__name__)

LEASE_RETRY_SECONDS = 30.0

StepHandler = Callable[[ExportState, ExportConfig, PauseController], StepOutcome]


class MonitorAction(Enum):
    IDLE = "idle"
    HEALTHY = "healthy"
    RESTARTED = "restarted"
    FAILED = "failed"


def next_step(step: ExportStep) -> ExportStep:
    return STEP_ORDER[STEP_ORDER.index(step) + 1]


def retry_delay(reason: PauseReason | None, config: ExportConfig) -> float:
    """Seconds to wait before the next invocation after a pause."""
    if reason is PauseReason.LEASE_HELD:
        return min(config.lease_stale_seconds, LEASE_RETRY_SECONDS)
    return 0.0


class ExportOrchestrator:
    """Runs the export steps in order and is the only writer of terminal status.

    Every invocation reloads its state from the export directory, so the
    same step may be entered any number of times. A step either completes,
    and the machine moves on while time remains, or pauses, and the
    continuation trigger is asked to invoke ``run()`` again later.
    """

    def __init__(
        self,
        export_dir: Path,
        trigger: ContinuationTrigger | None = None,
        metadata_collector: MetadataCollector | None = None,
        pause_factory: Callable[[ExportConfig], PauseController] | None = None,
    ):
        self.layout = ExportLayout(Path(export_dir))
        self.store = StateStore(self.layout)
        self.status = StatusFile(self.layout.status_path)
        self.checkpoints = CheckpointStore(self.layout.checkpoint_path)
        self.trigger = trigger or NullTrigger()
        self.metadata_collector = metadata_collector
        self.pause_factory = pause_factory or (lambda config: PauseController(config.budget))
        self._handlers: dict[ExportStep, StepHandler] = {
            ExportStep.INIT: self._step_init,
            ExportStep.CONTENT: self._step_content,
            ExportStep.DATABASE: self._step_database,
            ExportStep.METADATA: self._step_metadata,
            ExportStep.FINALIZE: self._step_finalize,
        }

    @property
    def export_dir(self) -> Path:
        return self.layout.export_dir

    def start(self, config: ExportConfig) -> RunResult:
        """Discard any previous export in the directory and begin a new one."""
        if Path(config.export_dir).resolve() != self.export_dir.resolve():
            raise ValueError(f"Config export_dir {config.export_dir} does not match {self.export_dir}")

        self.export_dir.mkdir(parents=True, exist_ok=True)
        self.cleanup()

        state = ExportState(
            export_id=secrets.token_hex(8),
            step=ExportStep.INIT,
            filenames=generate_artifact_names(config.compress_sql),
            config=config.to_dict(),
        )
        self.store.save(state)
        self.status.write(ExportStatus.STARTING)
        return self._run(force=True)

    def run(self, force: bool = False) -> RunResult:
        """Advance the current export as far as this invocation's budget allows."""
        return self._run(force=force)

    def _run(self, force: bool) -> RunResult:
        state = self.store.load()
        if state.step in (ExportStep.DONE, ExportStep.ERROR):
            return self._result(state)

        config = ExportConfig.from_dict(state.config)
        if not force and self._another_invocation_active(config):
            logger.info("Another invocation is working on step %s", state.step.value)
            return RunResult(status=self.status.read() or "", step=state.step, busy=True)

        log_path = self.layout.artifact_paths(state.filenames)["log"]
        with ExportLog(log_path):
            logger.info("Export invocation started at step '%s'", state.step.value)
            try:
                return self._advance(state, config)
            except FatalExportError as e:
                return self._fail(state, str(e))
            except (OSError, sqlite3.Error) as e:
                logger.exception("Unexpected failure in step '%s'", state.step.value)
                return self._fail(state, str(e))
            except Exception as e:
                logger.exception("Unhandled error in step '%s'", state.step.value)
                return self._fail(state, f"{type(e).__name__}: {e}")

    def _another_invocation_active(self, config: ExportConfig) -> bool:
        status, _ = self.status.current()
        if status not in IN_PROGRESS_STATUSES:
            return False
        age = self.status.age_seconds()
        return age is not None and age < config.stuck_threshold_seconds

    def _advance(self, state: ExportState, config: ExportConfig) -> RunResult:
        controller = self.pause_factory(config)

        while True:
            outcome = self._handlers[state.step](state, config, controller)
            if not outcome.completed:
                return self._pause(state, outcome.reason, retry_delay(outcome.reason, config))

            state.step = next_step(state.step)
            self.store.save(state)
            if state.step is ExportStep.DONE:
                logger.info("Export completed successfully")
                return self._result(state)

            if controller.time_exhausted():
                return self._pause(state, PauseReason.TIME_BUDGET)

    def _pause(self, state: ExportState, reason: PauseReason | None, delay: float = 0.0) -> RunResult:
        self.store.save(state)
        text = self.status.write(ExportStatus.PAUSED)
        reason_text = reason.value if reason else "unknown"
        logger.info("Export paused at step '%s' (%s)", state.step.value, reason_text)
        self.trigger.schedule(reason_text, delay)
        return RunResult(status=text, step=state.step, pause_reason=reason, retry_after=delay)

    def _fail(self, state: ExportState, message: str) -> RunResult:
        logger.error("Export failed at step '%s': %s", state.step.value, message)
        state.step = ExportStep.ERROR
        state.error = message
        self.store.save(state)
        text = self.status.write(ExportStatus.ERROR, message)
        return RunResult(status=text, step=state.step, error=message)

    def _result(self, state: ExportState) -> RunResult:
        return RunResult(status=self.status.read() or "", step=state.step, error=state.error)

    # Steps

    def _step_init(self, state: ExportState, config: ExportConfig, controller: PauseController) -> StepOutcome:
        self.status.write(ExportStatus.STARTING)
        raise_resource_limits()
        logger.info(
            "Resource budget: %.1fs per invocation, memory limit %s at %.0f%%",
            config.budget.time_budget_seconds,
            format_bytes(controller.memory_limit),
            config.budget.memory_fraction * 100,
        )
        self.checkpoints.clear()

        manifest_path = self.layout.manifest_path
        if manifest_path.exists() and state.enumeration is not None:
            logger.info("Reusing existing file manifest")
            return StepOutcome.done()

        exclusions = ExclusionFilter(
            config.source_dir, [*config.extra_exclusions, self.export_dir]
        )
        enumerator = FileEnumerator(exclusions, config.base_path_name, config.progress_interval)
        stats = enumerator.enumerate(config.source_dir, manifest_path)
        state.enumeration = stats.to_dict()
        return StepOutcome.done()

    def _step_content(self, state: ExportState, config: ExportConfig, controller: PauseController) -> StepOutcome:
        if self.checkpoints.exists():
            self.status.write(ExportStatus.RESUMING)
        else:
            self.status.write(ExportStatus.EXPORTING)

        exporter = ContentExporter(
            manifest_path=self.layout.manifest_path,
            archive_path=self.layout.artifact_paths(state.filenames)["archive"],
            checkpoints=self.checkpoints,
            pause=controller,
            status=self.status,
            chunk_size=config.chunk_size,
            progress_interval=config.progress_interval,
        )
        return exporter.run()

    def _step_database(self, state: ExportState, config: ExportConfig, controller: PauseController) -> StepOutcome:
        self.status.write(ExportStatus.EXPORTING_DATABASE)
        sql_path = self.layout.artifact_paths(state.filenames)["sql"]

        for candidate in dump_candidates(sql_path):
            if is_dump_complete(candidate):
                logger.info("Database already exported to %s, skipping", candidate.name)
                state.filenames.sql = candidate.name
                return StepOutcome.done()

        lock = DatabaseExportLock(self.layout.lock_path, stale_after=config.lease_stale_seconds)
        try:
            with Database(config.database_path) as db:
                dumper = DatabaseDumper(db, lock, page_size=config.db_page_size, compress=config.compress_sql)
                written = dumper.export(sql_path)
        except sqlite3.Error as e:
            raise DatabaseExportError(f"Cannot open database {config.database_path}: {e}") from e

        if written is None:
            logger.info("Database export already in progress by another process")
            return StepOutcome.paused(PauseReason.LEASE_HELD)

        state.filenames.sql = written.name
        return StepOutcome.done()

    def _step_metadata(self, state: ExportState, config: ExportConfig, controller: PauseController) -> StepOutcome:
        self.status.write(ExportStatus.GENERATING_METADATA)
        metadata_path = self.layout.artifact_paths(state.filenames)["metadata"]
        if metadata_path.exists():
            logger.info("Metadata already generated, skipping")
            return StepOutcome.done()

        collector = self.metadata_collector or SiteMetadataCollector(config, state.enumeration)
        metadata = collector.collect()
        if not isinstance(metadata, dict):
            raise FatalExportError(
                f"Metadata collector returned {type(metadata).__name__}, expected a JSON object"
            )
        write_json_atomic(metadata_path, metadata, indent=2)
        logger.info("Metadata written to %s", metadata_path.name)
        return StepOutcome.done()

    def _step_finalize(self, state: ExportState, config: ExportConfig, controller: PauseController) -> StepOutcome:
        self.status.write(ExportStatus.FINALIZING)
        paths = self.layout.artifact_paths(state.filenames)

        missing = []
        if not paths["archive"].exists():
            missing.append(f"archive ({paths['archive'].name})")
        if not any(candidate.exists() for candidate in dump_candidates(paths["sql"])):
            missing.append(f"database ({paths['sql'].name})")
        if not paths["metadata"].exists():
            missing.append(f"metadata ({paths['metadata'].name})")
        if missing:
            raise MissingArtifactsError(f"Export files missing: {', '.join(missing)}")

        self.status.write(ExportStatus.DONE)
        self.checkpoints.clear()
        remove_file(self.layout.manifest_path)
        logger.info(
            "Export artifacts: %s",
            ", ".join(f"{kind}={path.name}" for kind, path in paths.items()),
        )
        return StepOutcome.done()

    # Supervision

    def monitor(self) -> MonitorAction:
        """Restart an export whose in-progress status has gone quiet."""
        state = self.store.load()
        status, _ = self.status.current()
        if status not in IN_PROGRESS_STATUSES or state.step in (ExportStep.DONE, ExportStep.ERROR):
            return MonitorAction.IDLE

        config = ExportConfig.from_dict(state.config)
        age = self.status.age_seconds()
        if age is None or age <= config.stuck_threshold_seconds:
            return MonitorAction.HEALTHY

        # A running dump reports progress through its lease, not the status file.
        lease_age = DatabaseExportLock(self.layout.lock_path, stale_after=config.lease_stale_seconds).age_seconds()
        if lease_age is not None and lease_age < config.lease_stale_seconds:
            return MonitorAction.HEALTHY

        log_path = self.layout.artifact_paths(state.filenames)["log"]
        with ExportLog(log_path):
            logger.warning(
                "Export appears stuck in '%s' state for %d seconds", status.value, int(age)
            )
            if state.restarts >= config.max_restarts:
                self._fail(
                    state,
                    f"Export stuck in '{status.value}' state after {state.restarts} restarts",
                )
                return MonitorAction.FAILED

            state.restarts += 1
            self.checkpoints.clear()
            DatabaseExportLock(self.layout.lock_path).break_lock()
            self.store.save(state)
            self.status.write(ExportStatus.PAUSED)
            logger.info(
                "Restarting step '%s' (restart %d of %d)",
                state.step.value,
                state.restarts,
                config.max_restarts,
            )
            self.trigger.schedule("stuck_restart")
        return MonitorAction.RESTARTED

    def report(self) -> StatusReport:
        if not self.store.exists():
            return StatusReport(status=self.status.read(), step=None)

        state = self.store.load()
        paths = self.layout.artifact_paths(state.filenames)
        report = StatusReport(
            status=self.status.read(),
            step=state.step,
            idle_seconds=self.status.age_seconds(),
            restarts=state.restarts,
            enumeration=state.enumeration,
            recent_log=recent_log_lines(paths["log"]),
        )

        checkpoint = self.checkpoints.load()
        if checkpoint is not None:
            report.files_processed = checkpoint.files_processed
            report.bytes_processed = checkpoint.bytes_processed
            report.last_update = checkpoint.last_update

        if state.step is ExportStep.DONE:
            for kind, path in paths.items():
                if path.exists():
                    stat = path.stat()
                    report.artifacts[kind] = {
                        "path": str(path),
                        "size": stat.st_size,
                        "modified": int(stat.st_mtime),
                    }
        return report

    def cleanup(self) -> None:
        """Remove working files and artifacts of a previous export."""
        removed = 0
        if self.store.exists():
            try:
                previous = self.store.load()
            except NoExportError:
                previous = None
            if previous is not None:
                for kind, path in self.layout.artifact_paths(previous.filenames).items():
                    targets = dump_candidates(path) if kind == "sql" else [path]
                    removed += sum(remove_file(target) for target in targets)
            self.store.clear()

        for path in self.layout.working_files():
            removed += remove_file(path)
        if removed:
            logger.info("Cleaned up %d files from a previous export", removed)
