"""Tests for metadata collection, continuation triggers and environment setup."""

import subprocess
import sys
from pathlib import Path

from siteexport import __version__
from siteexport.exporter.environment import raise_resource_limits
from siteexport.exporter.metadata import SiteMetadataCollector
from siteexport.exporter.triggers import NullTrigger, SubprocessTrigger


class TestSiteMetadataCollector:
    """Tests for SiteMetadataCollector."""

    def test_sections(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        config = make_config(five_file_tree, site_db, tmp_path / "export")
        enumeration = {"files_found": 5, "files_excluded": 1, "total_size": 2048}

        metadata = SiteMetadataCollector(config, enumeration).collect()

        assert set(metadata) == {"site_info", "export_info", "database", "system"}
        assert metadata["site_info"]["base_path_name"] == "site"
        assert metadata["export_info"]["exporter_version"] == __version__
        assert metadata["export_info"]["file_format"] == "SITEX-1"
        assert metadata["export_info"]["content_size"] == 2048
        assert metadata["export_info"]["content_size_formatted"] == "2.00 KB"
        assert metadata["export_info"]["files_excluded"] == 1
        assert metadata["system"]["memory_total"] > 0

    def test_database_details(self, five_file_tree: Path, site_db: Path, tmp_path: Path, make_config):
        config = make_config(five_file_tree, site_db, tmp_path / "export")

        database = SiteMetadataCollector(config).collect()["database"]

        assert database["name"] == "site.db"
        assert database["tables_count"] == 2
        assert database["total_size_bytes"] == site_db.stat().st_size

    def test_unreadable_database(self, five_file_tree: Path, tmp_path: Path, make_config):
        config = make_config(five_file_tree, tmp_path / "missing.db", tmp_path / "export")

        database = SiteMetadataCollector(config).collect()["database"]

        assert database["tables_count"] is None
        assert database["total_size_bytes"] is None


class TestTriggers:
    """Tests for continuation triggers."""

    def test_null_trigger_does_nothing(self):
        NullTrigger().schedule("time_budget")

    def test_subprocess_command(self, tmp_path: Path):
        trigger = SubprocessTrigger(tmp_path / "export", python="/usr/bin/python3")

        assert trigger.command() == [
            "/usr/bin/python3",
            "-m",
            "siteexport",
            "resume",
            "--export-dir",
            str(tmp_path / "export"),
            "--spawn",
        ]
        assert trigger.command(delay=5)[-2:] == ["--delay", "5"]

    def test_subprocess_is_detached(self, tmp_path: Path, monkeypatch):
        calls = []
        monkeypatch.setattr(subprocess, "Popen", lambda cmd, **kwargs: calls.append((cmd, kwargs)))

        SubprocessTrigger(tmp_path).schedule("file_batch")

        cmd, kwargs = calls[0]
        assert cmd[0] == sys.executable
        assert kwargs["start_new_session"] is True
        assert kwargs["stdin"] is subprocess.DEVNULL


class TestEnvironment:
    """Tests for raise_resource_limits."""

    def test_soft_limits_raised_to_hard(self):
        limits = raise_resource_limits()

        if sys.platform != "win32":
            assert "RLIMIT_NOFILE" in limits
            for soft, hard in limits.values():
                assert soft <= hard or hard < 0
