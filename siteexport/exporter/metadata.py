"""Metadata describing an export, written as the metadata artifact."""

import logging
import platform
import socket
import sqlite3
import time
from datetime import datetime
from typing import Any, Protocol

import psutil

from siteexport import __version__
from siteexport.archive.format import FORMAT_VERSION
from siteexport.config import ExportConfig
from siteexport.database.connection import Database
from siteexport.scanner.progress import format_bytes

logger = logging.getLogger(__name__)


class MetadataCollector(Protocol):
    def collect(self) -> dict[str, Any]: ...


class SiteMetadataCollector:
    """Collects site, export, database and host details for the metadata file."""

    def __init__(self, config: ExportConfig, enumeration: dict[str, Any] | None = None):
        self.config = config
        self.enumeration = enumeration or {}

    def collect(self) -> dict[str, Any]:
        return {
            "site_info": self._site_info(),
            "export_info": self._export_info(),
            "database": self._database_info(),
            "system": self._system_info(),
        }

    def _site_info(self) -> dict[str, Any]:
        return {
            "source_dir": str(self.config.source_dir),
            "base_path_name": self.config.base_path_name,
            "hostname": socket.gethostname(),
        }

    def _export_info(self) -> dict[str, Any]:
        content_size = int(self.enumeration.get("total_size", 0))
        return {
            "created_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "created_at_unix": int(time.time()),
            "created_by": "siteexport",
            "exporter_version": __version__,
            "file_format": FORMAT_VERSION,
            "content_size": content_size,
            "content_size_formatted": format_bytes(content_size),
            "files_found": int(self.enumeration.get("files_found", 0)),
            "files_excluded": int(self.enumeration.get("files_excluded", 0)),
        }

    def _database_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "name": self.config.database_path.name,
            "tables_count": None,
            "total_size_bytes": None,
            "total_size_formatted": None,
        }
        try:
            with Database(self.config.database_path) as db:
                row = db.conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master "
                    "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'"
                ).fetchone()
                page_count = db.conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = db.conn.execute("PRAGMA page_size").fetchone()[0]
        except sqlite3.Error as e:
            logger.warning("Could not read database details for metadata: %s", e)
            return info

        total_size = page_count * page_size
        info["tables_count"] = row[0]
        info["total_size_bytes"] = total_size
        info["total_size_formatted"] = format_bytes(total_size)
        return info

    def _system_info(self) -> dict[str, Any]:
        return {
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
            "memory_total": psutil.virtual_memory().total,
        }
