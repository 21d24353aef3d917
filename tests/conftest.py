"""Shared fixtures for siteexport tests."""

import sqlite3
from pathlib import Path

import pytest

from siteexport.config import ExportConfig, ResourceBudget

UNLIMITED_MEMORY = 1 << 60


@pytest.fixture
def five_file_tree(tmp_path: Path) -> Path:
    """A content tree of five small files with distinct contents."""
    source = tmp_path / "site"
    source.mkdir()
    for i in range(1, 6):
        (source / f"file{i}.txt").write_bytes(f"content of file {i}\n".encode() * i)
    return source


@pytest.fixture
def site_db(tmp_path: Path) -> Path:
    """A small SQLite database resembling a site's content tables."""
    db_path = tmp_path / "site.db"
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE posts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            body TEXT,
            views INTEGER DEFAULT 0,
            thumbnail BLOB
        );
        CREATE TABLE options (
            name TEXT PRIMARY KEY,
            value TEXT
        ) WITHOUT ROWID;
        CREATE INDEX idx_posts_title ON posts (title);
        CREATE VIEW popular AS SELECT id, title FROM posts WHERE views > 10;
        CREATE TRIGGER posts_touch AFTER UPDATE ON posts BEGIN
            UPDATE posts SET views = views WHERE id = NEW.id;
        END;
        """
    )
    conn.executemany(
        "INSERT INTO posts (title, body, views, thumbnail) VALUES (?, ?, ?, ?)",
        [
            ("Hello world", "First post", 5, None),
            ("It's quoted", "Body with 'quotes' and \"doubles\"", 20, b"\x00\x01\xff"),
            ("Ünïcödé", "Line one\nLine two", 42, None),
            ("Empty body", None, 0, b""),
            ("Last", "x" * 500, 11, b"\x89PNG"),
        ],
    )
    conn.executemany(
        "INSERT INTO options (name, value) VALUES (?, ?)",
        [("siteurl", "https://example.com"), ("blogname", "Example")],
    )
    conn.commit()
    conn.close()
    return db_path


def _build_config(source: Path, database: Path, export_dir: Path, **overrides) -> ExportConfig:
    budget_values = {
        "time_budget_seconds": 1000.0,
        "memory_limit_bytes": UNLIMITED_MEMORY,
    }
    budget_values.update(overrides.pop("budget", {}))
    return ExportConfig(
        source_dir=source,
        database_path=database,
        export_dir=export_dir,
        budget=ResourceBudget(**budget_values),
        **overrides,
    )


@pytest.fixture
def make_config():
    """Factory for ExportConfig with a budget that never pauses on its own."""
    return _build_config
