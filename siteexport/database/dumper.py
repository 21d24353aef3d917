"""SQL dump of the site database."""

import gzip
import logging
import math
import os
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from siteexport import __version__
from siteexport.database.connection import Database
from siteexport.database.lock import DatabaseExportLock
from siteexport.errors import DatabaseExportError
from siteexport.state.jsonfile import remove_file

logger = logging.getLogger(__name__)

DUMP_COMPLETE_MARKER = "-- siteexport: dump complete"
TRAILER_SCAN_BYTES = 1024
MIN_COMPRESSED_SIZE = 50
COMPRESS_CHUNK_SIZE = 1024 * 1024
DEFAULT_PAGE_SIZE = 1000


def is_dump_complete(path: Path) -> bool:
    """True if path holds a finished dump.

    Plain dumps must end with the completion trailer. Compressed dumps are
    only ever renamed into place after a full dump, so a non-trivial size is
    enough.
    """
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return False

    if path.name.endswith(".gz"):
        return size >= MIN_COMPRESSED_SIZE

    with open(path, "rb") as f:
        f.seek(max(0, size - TRAILER_SCAN_BYTES))
        tail = f.read()
    return DUMP_COMPLETE_MARKER.encode() in tail


def dump_candidates(path: Path) -> list[Path]:
    """The compressed and plain variants of a dump path."""
    plain = path.with_name(path.name.removesuffix(".gz"))
    return [plain.with_name(plain.name + ".gz"), plain]


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def sql_literal(value) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NULL"
        if math.isinf(value):
            return "1e999" if value > 0 else "-1e999"
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "X'" + bytes(value).hex().upper() + "'"
    return "'" + str(value).replace("'", "''") + "'"


class DatabaseDumper:
    """Writes schema and data of every table as a portable SQL script.

    Rows are fetched in pages of ``page_size`` so memory stays bounded, and
    each page becomes one multi-row INSERT. The dump runs inside a single
    invocation; the lease keeps a second invocation from starting another.
    """

    def __init__(
        self,
        database: Database,
        lock: DatabaseExportLock,
        page_size: int = DEFAULT_PAGE_SIZE,
        compress: bool = True,
    ):
        self.db = database
        self.lock = lock
        self.page_size = page_size
        self.compress = compress

    def export(self, output_path: Path) -> Path | None:
        """Dump to output_path and return the path actually written.

        Returns None without writing anything when another process holds
        the lease. If compression fails the uncompressed dump is kept.
        """
        if not self.lock.acquire():
            return None
        try:
            return self._export(output_path)
        finally:
            self.lock.release()

    def _export(self, output_path: Path) -> Path:
        plain_path = output_path.with_name(output_path.name.removesuffix(".gz"))
        partial_path = plain_path.with_name(plain_path.name + ".partial")

        try:
            with open(
                partial_path, "w", encoding="utf-8", errors="surrogateescape", newline="\n"
            ) as out:
                self._write_dump(out)
                out.flush()
                os.fsync(out.fileno())
        except sqlite3.Error as e:
            remove_file(partial_path)
            raise DatabaseExportError(f"Database export failed: {e}") from e
        except OSError as e:
            remove_file(partial_path)
            raise DatabaseExportError(f"Cannot write SQL file {partial_path.name}: {e}") from e

        if not self.compress:
            os.replace(partial_path, plain_path)
            logger.info("Database export completed successfully to %s", plain_path.name)
            return plain_path

        gz_path = plain_path.with_name(plain_path.name + ".gz")
        logger.info("Compressing SQL file...")
        if compress_file(partial_path, gz_path):
            remove_file(partial_path)
            logger.info("Database export completed successfully to %s", gz_path.name)
            return gz_path

        logger.warning("Compression failed, using uncompressed SQL file")
        os.replace(partial_path, plain_path)
        logger.info("Database export completed successfully to %s", plain_path.name)
        return plain_path

    def _write_dump(self, out: TextIO) -> None:
        conn = self.db.conn
        tables = self._list_tables(conn)
        total = len(tables)

        out.write(self._header())
        logger.info("Exporting %d tables...", total)

        for count, table in enumerate(tables, start=1):
            self._write_table(conn, out, table["name"], table["sql"])
            self.lock.heartbeat()
            if count % 5 == 0 or count == total:
                logger.info("Exported %d of %d tables", count, total)

        self._write_sequences(conn, out)
        self._write_schema_objects(conn, out)
        out.write(self._footer())

    def _header(self) -> str:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return (
            "-- Site Database Export\n"
            f"-- Generated by siteexport {__version__}\n"
            f"-- Date: {now} UTC\n"
            f"-- Database: {self.db.name}\n"
            f"-- SQLite version: {sqlite3.sqlite_version}\n\n"
            "PRAGMA foreign_keys=OFF;\n"
            "PRAGMA defer_foreign_keys=ON;\n"
            "BEGIN TRANSACTION;\n"
        )

    def _footer(self) -> str:
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        return (
            "\nCOMMIT;\n"
            "PRAGMA foreign_keys=ON;\n\n"
            f"-- Dump completed on {now} UTC\n"
            f"{DUMP_COMPLETE_MARKER}\n"
        )

    def _list_tables(self, conn: sqlite3.Connection) -> list[sqlite3.Row]:
        return conn.execute(
            """
            SELECT name, sql FROM sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'
            ORDER BY name
            """
        ).fetchall()

    def _write_table(self, conn: sqlite3.Connection, out: TextIO, table: str, create_sql: str) -> None:
        quoted = quote_identifier(table)
        out.write(f"\n-- Table structure for table {quoted}\n")
        out.write(f"DROP TABLE IF EXISTS {quoted};\n")
        out.write(f"{create_sql};\n\n")

        if create_sql.upper().startswith("CREATE VIRTUAL TABLE"):
            logger.info("Skipping data of virtual table %s", table)
            return

        columns = self._insertable_columns(conn, table)
        if not columns:
            return

        column_list = ", ".join(quote_identifier(c) for c in columns)
        order_by = self._order_clause(conn, table, create_sql)
        total_rows = conn.execute(f"SELECT COUNT(*) FROM {quoted}").fetchone()[0]  # noqa: S608

        offset = 0
        while offset < total_rows:
            rows = conn.execute(
                f"SELECT {column_list} FROM {quoted} ORDER BY {order_by} LIMIT ? OFFSET ?",  # noqa: S608
                (self.page_size, offset),
            ).fetchall()
            if not rows:
                break

            out.write(f"INSERT INTO {quoted} ({column_list}) VALUES\n")
            out.write(
                ",\n".join("(" + ",".join(sql_literal(value) for value in row) + ")" for row in rows)
            )
            out.write(";\n")

            offset += self.page_size
            self.lock.heartbeat()

    def _insertable_columns(self, conn: sqlite3.Connection, table: str) -> list[str]:
        # Generated and hidden columns (hidden != 0) cannot be inserted.
        rows = conn.execute(f"PRAGMA table_xinfo({quote_identifier(table)})").fetchall()
        return [row["name"] for row in rows if row["hidden"] == 0]

    def _order_clause(self, conn: sqlite3.Connection, table: str, create_sql: str) -> str:
        if "WITHOUT ROWID" not in create_sql.upper():
            return "rowid"
        rows = conn.execute(f"PRAGMA table_info({quote_identifier(table)})").fetchall()
        keys = sorted((row for row in rows if row["pk"] > 0), key=lambda row: row["pk"])
        return ", ".join(quote_identifier(row["name"]) for row in keys)

    def _write_sequences(self, conn: sqlite3.Connection, out: TextIO) -> None:
        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
        ).fetchone()
        if not exists:
            return
        rows = conn.execute("SELECT name, seq FROM sqlite_sequence ORDER BY name").fetchall()
        if not rows:
            return
        out.write("\n-- Autoincrement counters\n")
        out.write("DELETE FROM sqlite_sequence;\n")
        for row in rows:
            out.write(
                f"INSERT INTO sqlite_sequence (name, seq) VALUES ({sql_literal(row['name'])}, {sql_literal(row['seq'])});\n"
            )

    def _write_schema_objects(self, conn: sqlite3.Connection, out: TextIO) -> None:
        rows = conn.execute(
            """
            SELECT type, name, sql FROM sqlite_master
            WHERE type IN ('index', 'view', 'trigger') AND sql IS NOT NULL
            ORDER BY CASE type WHEN 'index' THEN 0 WHEN 'view' THEN 1 ELSE 2 END, name
            """
        ).fetchall()
        if not rows:
            return
        out.write("\n-- Indexes, views and triggers\n")
        for row in rows:
            if row["type"] == "view":
                out.write(f"DROP VIEW IF EXISTS {quote_identifier(row['name'])};\n")
            out.write(f"{row['sql']};\n")


def compress_file(source: Path, destination: Path) -> bool:
    """Gzip source into destination; False (and no destination) on failure."""
    partial = destination.with_name(destination.name + ".partial")
    try:
        with open(source, "rb") as src, gzip.open(partial, "wb", compresslevel=9) as dst:
            shutil.copyfileobj(src, dst, COMPRESS_CHUNK_SIZE)
        if partial.stat().st_size < MIN_COMPRESSED_SIZE:
            logger.error("Compressed file %s is unexpectedly small", partial.name)
            remove_file(partial)
            return False
        os.replace(partial, destination)
    except OSError as e:
        logger.error("Compression of %s failed: %s", source.name, e)
        remove_file(partial)
        return False
    return True
