"""Tests for the export step state machine."""

import json
import os
import time
from datetime import datetime
from pathlib import Path

import pytest

from siteexport.archive.reader import read_blocks
from siteexport.database import DatabaseDumper, DatabaseExportLock
from siteexport.database.dumper import dump_candidates
from siteexport.errors import NoExportError
from siteexport.exporter import ExportOrchestrator, MonitorAction
from siteexport.state.models import ExportStatus, ExportStep, PauseReason
from siteexport.state.status import StatusFile


class RecordingTrigger:
    def __init__(self):
        self.reasons: list[str] = []
        self.delays: list[float] = []

    def schedule(self, reason: str, delay: float = 0.0) -> None:
        self.reasons.append(reason)
        self.delays.append(delay)


class StaticCollector:
    def __init__(self, data):
        self.data = data

    def collect(self):
        return self.data


class RaisingCollector:
    def collect(self):
        raise RuntimeError("collector failed")


def _artifacts(orchestrator: ExportOrchestrator) -> dict[str, Path]:
    state = orchestrator.store.load()
    return orchestrator.layout.artifact_paths(state.filenames)


def _run_until_done(orchestrator: ExportOrchestrator, result):
    for _ in range(50):
        if not result.needs_continuation:
            return result
        result = orchestrator.run()
    raise AssertionError("export did not finish")


@pytest.fixture
def three_file_tree(tmp_path: Path) -> Path:
    source = tmp_path / "site"
    (source / "media-cache").mkdir(parents=True)
    (source / "empty.txt").write_bytes(b"")
    (source / "small.txt").write_bytes(b"0123456789")
    (source / "big.bin").write_bytes(os.urandom(2_000_000))
    (source / "media-cache" / "thumb.jpg").write_bytes(b"cached")
    return source


class TestFullExport:
    """End-to-end exports."""

    def test_three_file_export(self, three_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        config = make_config(
            three_file_tree,
            site_db,
            export_dir,
            extra_exclusions=[str(three_file_tree / "media-cache")],
        )
        orchestrator = ExportOrchestrator(export_dir)

        result = orchestrator.start(config)

        assert result.finished
        assert result.status == "done"
        state = orchestrator.store.load()
        assert state.enumeration["files_found"] == 3
        assert state.enumeration["files_excluded"] == 1

        paths = _artifacts(orchestrator)
        blocks = list(read_blocks(paths["archive"]))
        assert [(h.relative_path, h.size) for h, _ in blocks] == [
            ("site/big.bin", 2_000_000),
            ("site/empty.txt", 0),
            ("site/small.txt", 10),
        ]
        assert blocks[2][1] == b"0123456789"
        assert paths["sql"].name.endswith(".sql.gz")
        assert paths["sql"].exists()
        metadata = json.loads(paths["metadata"].read_text())
        assert metadata["export_info"]["files_found"] == 3
        assert metadata["database"]["tables_count"] == 2

    def test_working_files_removed_on_completion(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)

        orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        assert not orchestrator.layout.manifest_path.exists()
        assert not orchestrator.layout.checkpoint_path.exists()
        assert not orchestrator.layout.lock_path.exists()

    def test_uncompressed_dump(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)

        orchestrator.start(make_config(five_file_tree, site_db, export_dir, compress_sql=False))

        assert _artifacts(orchestrator)["sql"].name.endswith(".sql")

    def test_log_artifact_records_status_changes(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)

        orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        log = _artifacts(orchestrator)["log"].read_text()
        assert "Export status: exporting" in log
        assert "Export status: done" in log


class TestInterruptedExport:
    """Exports that pause and resume across invocations."""

    def test_pause_after_second_file(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        trigger = RecordingTrigger()
        orchestrator = ExportOrchestrator(export_dir, trigger=trigger)

        result = orchestrator.start(
            make_config(five_file_tree, site_db, export_dir, budget={"max_files_per_run": 2})
        )

        assert result.step is ExportStep.CONTENT
        assert result.pause_reason is PauseReason.FILE_BATCH
        assert result.status == "paused"
        assert result.needs_continuation
        assert trigger.reasons == ["file_batch"]
        assert orchestrator.checkpoints.load().files_processed == 2

    def test_resumed_archive_matches_uninterrupted(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        straight_dir = tmp_path / "straight"
        straight = ExportOrchestrator(straight_dir)
        straight.start(make_config(five_file_tree, site_db, straight_dir))

        resumed_dir = tmp_path / "resumed"
        resumed = ExportOrchestrator(resumed_dir)
        first = resumed.start(make_config(five_file_tree, site_db, resumed_dir, budget={"max_files_per_run": 2}))
        assert resumed.checkpoints.load().files_processed == 2

        result = _run_until_done(resumed, first)

        assert result.finished
        assert _artifacts(resumed)["archive"].read_bytes() == _artifacts(straight)["archive"].read_bytes()

    def test_yields_between_steps_when_time_is_spent(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)

        result = orchestrator.start(
            make_config(five_file_tree, site_db, export_dir, budget={"time_budget_seconds": 0.0})
        )

        assert result.step is ExportStep.CONTENT
        assert result.pause_reason is PauseReason.TIME_BUDGET
        assert orchestrator.layout.manifest_path.exists()

    def test_lease_held_defers_database_step(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        result = orchestrator.start(
            make_config(five_file_tree, site_db, export_dir, budget={"max_files_per_run": 2})
        )
        other = DatabaseExportLock(orchestrator.layout.lock_path)
        assert other.acquire()

        while result.step is ExportStep.CONTENT:
            result = orchestrator.run()

        assert result.step is ExportStep.DATABASE
        assert result.pause_reason is PauseReason.LEASE_HELD
        assert orchestrator.run().step is ExportStep.DATABASE

        other.release()
        assert _run_until_done(orchestrator, orchestrator.run()).finished

    def test_lease_contention_delays_continuation(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        trigger = RecordingTrigger()
        orchestrator = ExportOrchestrator(export_dir, trigger=trigger)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        state = orchestrator.store.load()
        state.step = ExportStep.DATABASE
        orchestrator.store.save(state)
        orchestrator.status.write(ExportStatus.PAUSED)
        for candidate in dump_candidates(_artifacts(orchestrator)["sql"]):
            candidate.unlink(missing_ok=True)
        other = DatabaseExportLock(orchestrator.layout.lock_path)
        assert other.acquire()

        results = [orchestrator.run() for _ in range(3)]

        assert all(r.pause_reason is PauseReason.LEASE_HELD for r in results)
        assert all(r.retry_after == 30.0 for r in results)
        assert trigger.reasons[-3:] == ["lease_held"] * 3
        assert trigger.delays[-3:] == [30.0] * 3

    def test_busy_when_another_invocation_is_active(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir, budget={"max_files_per_run": 2}))
        orchestrator.status.write(ExportStatus.EXPORTING)

        result = orchestrator.run()

        assert result.busy
        assert not result.needs_continuation
        assert orchestrator.checkpoints.load().files_processed == 2
        assert orchestrator.run(force=True).pause_reason is PauseReason.FILE_BATCH


class TestStepIdempotence:
    """Re-entering steps that already produced their artifact."""

    def test_database_step_skips_complete_dump(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config, monkeypatch
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir, compress_sql=False))
        sql_path = _artifacts(orchestrator)["sql"]
        before = (sql_path.read_bytes(), sql_path.stat().st_mtime_ns)

        state = orchestrator.store.load()
        state.step = ExportStep.DATABASE
        orchestrator.store.save(state)
        orchestrator.status.write(ExportStatus.PAUSED)

        def fail_export(self, output_path):
            raise AssertionError("database dumped twice")

        monkeypatch.setattr(DatabaseDumper, "export", fail_export)
        result = orchestrator.run()

        assert result.finished
        assert (sql_path.read_bytes(), sql_path.stat().st_mtime_ns) == before

    def test_metadata_step_keeps_existing_file(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir, metadata_collector=StaticCollector({"run": 1}))
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        metadata_path = _artifacts(orchestrator)["metadata"]

        state = orchestrator.store.load()
        state.step = ExportStep.METADATA
        orchestrator.store.save(state)
        orchestrator.status.write(ExportStatus.PAUSED)
        orchestrator.metadata_collector = StaticCollector({"run": 2})
        orchestrator.run()

        assert json.loads(metadata_path.read_text()) == {"run": 1}

    def test_finished_export_is_not_rerun(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        archive = _artifacts(orchestrator)["archive"]
        mtime = archive.stat().st_mtime_ns

        result = orchestrator.run()

        assert result.finished
        assert archive.stat().st_mtime_ns == mtime


class TestFailures:
    """Fatal errors end the export with an error status."""

    def test_missing_source(self, tmp_path: Path, site_db: Path, make_config):
        export_dir = tmp_path / "export"
        trigger = RecordingTrigger()
        orchestrator = ExportOrchestrator(export_dir, trigger=trigger)

        result = orchestrator.start(make_config(tmp_path / "missing", site_db, export_dir))

        assert result.step is ExportStep.ERROR
        assert result.status.startswith("error: Source directory is not accessible")
        assert not result.needs_continuation
        assert trigger.reasons == []

    def test_undecodable_source_path_in_error(self, tmp_path: Path, site_db: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        source = tmp_path / os.fsdecode(b"missing-\xff")

        result = orchestrator.start(make_config(source, site_db, export_dir))

        assert result.step is ExportStep.ERROR
        status, message = orchestrator.status.current()
        assert status is ExportStatus.ERROR
        assert message.startswith("Source directory is not accessible")
        assert orchestrator.store.load().step is ExportStep.ERROR

    def test_error_is_terminal(self, tmp_path: Path, site_db: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(tmp_path / "missing", site_db, export_dir))

        result = orchestrator.run()

        assert result.step is ExportStep.ERROR
        assert result.error.startswith("Source directory is not accessible")

    def test_missing_database(self, five_file_tree: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)

        result = orchestrator.start(make_config(five_file_tree, tmp_path / "missing.db", export_dir))

        assert result.step is ExportStep.ERROR
        assert "Cannot open database" in result.status

    def test_missing_artifact_blocks_finalize(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        _artifacts(orchestrator)["archive"].unlink()

        state = orchestrator.store.load()
        state.step = ExportStep.FINALIZE
        orchestrator.store.save(state)
        orchestrator.status.write(ExportStatus.PAUSED)
        result = orchestrator.run()

        assert result.step is ExportStep.ERROR
        assert result.status.startswith("error: Export files missing: archive")

    def test_metadata_must_be_an_object(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir, metadata_collector=StaticCollector(["not", "a", "dict"]))

        result = orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        assert result.step is ExportStep.ERROR
        assert "expected a JSON object" in result.error

    def test_collector_exception_ends_export(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir, metadata_collector=RaisingCollector())

        result = orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        assert result.step is ExportStep.ERROR
        assert result.status == "error: RuntimeError: collector failed"
        assert not result.busy
        assert orchestrator.run().step is ExportStep.ERROR

    def test_unserializable_metadata_ends_export(
        self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config
    ):
        export_dir = tmp_path / "export"
        collector = StaticCollector({"generated": datetime.now()})
        orchestrator = ExportOrchestrator(export_dir, metadata_collector=collector)

        result = orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        assert result.step is ExportStep.ERROR
        assert result.error.startswith("TypeError:")
        assert StatusFile(orchestrator.layout.status_path).current()[0] is ExportStatus.ERROR

    def test_run_without_export(self, tmp_path: Path):
        with pytest.raises(NoExportError):
            ExportOrchestrator(tmp_path / "export").run()

    def test_config_must_match_export_dir(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        with pytest.raises(ValueError):
            ExportOrchestrator(tmp_path / "one").start(make_config(five_file_tree, site_db, tmp_path / "two"))


class TestStartCleanup:
    """A new export discards the previous one."""

    def test_previous_artifacts_removed(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        old = _artifacts(orchestrator)

        orchestrator.start(make_config(five_file_tree, site_db, export_dir))
        new = _artifacts(orchestrator)

        assert not old["archive"].exists()
        assert not old["sql"].exists()
        assert not old["metadata"].exists()
        assert new["archive"].exists()
        assert new["archive"] != old["archive"]


class TestMonitor:
    """Stuck-export detection."""

    def _stall(self, orchestrator: ExportOrchestrator, status: ExportStatus = ExportStatus.EXPORTING) -> None:
        orchestrator.status.write(status)
        old = time.time() - 3600
        os.utime(orchestrator.layout.status_path, (old, old))

    def _paused_export(self, tree: Path, db: Path, export_dir: Path, make_config, trigger=None):
        orchestrator = ExportOrchestrator(export_dir, trigger=trigger)
        orchestrator.start(make_config(tree, db, export_dir, budget={"max_files_per_run": 2}))
        return orchestrator

    def test_paused_export_is_idle(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config)

        assert orchestrator.monitor() is MonitorAction.IDLE

    def test_active_export_is_healthy(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config)
        orchestrator.status.write(ExportStatus.EXPORTING)

        assert orchestrator.monitor() is MonitorAction.HEALTHY

    def test_stuck_export_is_restarted(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        trigger = RecordingTrigger()
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config, trigger)
        self._stall(orchestrator)

        action = orchestrator.monitor()

        assert action is MonitorAction.RESTARTED
        assert orchestrator.store.load().restarts == 1
        assert not orchestrator.checkpoints.exists()
        assert orchestrator.status.read() == "paused"
        assert trigger.reasons[-1] == "stuck_restart"

        result = _run_until_done(orchestrator, orchestrator.run())
        assert result.finished
        assert len(list(read_blocks(_artifacts(orchestrator)["archive"]))) == 5

    def test_running_dump_is_healthy(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config)
        dump_lease = DatabaseExportLock(orchestrator.layout.lock_path)
        assert dump_lease.acquire()
        dump_lease.heartbeat()
        self._stall(orchestrator, ExportStatus.EXPORTING_DATABASE)

        assert orchestrator.monitor() is MonitorAction.HEALTHY
        assert orchestrator.layout.lock_path.exists()
        assert dump_lease.read() is not None

    def test_stale_dump_lease_is_restarted(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config)
        dump_lease = DatabaseExportLock(orchestrator.layout.lock_path, clock=lambda: time.time() - 3600)
        assert dump_lease.acquire()
        self._stall(orchestrator, ExportStatus.EXPORTING_DATABASE)

        assert orchestrator.monitor() is MonitorAction.RESTARTED
        assert not orchestrator.layout.lock_path.exists()

    def test_restarts_are_bounded(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        orchestrator = self._paused_export(five_file_tree, site_db, tmp_path / "export", make_config)
        state = orchestrator.store.load()
        state.restarts = 3
        orchestrator.store.save(state)
        self._stall(orchestrator)

        action = orchestrator.monitor()

        assert action is MonitorAction.FAILED
        status, message = StatusFile(orchestrator.layout.status_path).current()
        assert status is ExportStatus.ERROR
        assert "stuck" in message


class TestReport:
    """Status reports for the presentation layer."""

    def test_report_during_export(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir, budget={"max_files_per_run": 2}))

        report = orchestrator.report()

        assert report.status == "paused"
        assert report.step is ExportStep.CONTENT
        assert report.files_processed == 2
        assert report.enumeration["files_found"] == 5
        assert report.recent_log
        assert report.artifacts == {}

    def test_report_after_completion(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        export_dir = tmp_path / "export"
        orchestrator = ExportOrchestrator(export_dir)
        orchestrator.start(make_config(five_file_tree, site_db, export_dir))

        report = orchestrator.report()

        assert report.status == "done"
        assert set(report.artifacts) == {"archive", "sql", "metadata", "log"}
        assert report.artifacts["archive"]["size"] > 0

    def test_report_without_export(self, tmp_path: Path):
        report = ExportOrchestrator(tmp_path / "export").report()

        assert report.step is None
        assert report.status is None
