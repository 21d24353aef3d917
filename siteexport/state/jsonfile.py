"""Atomic JSON and text file helpers for durable state."""

import json
import os
from pathlib import Path
from typing import Any


def write_text_atomic(path: Path, text: str, errors: str = "strict") -> None:
    """Replace path with text so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    with open(tmp_path, "w", encoding="utf-8", errors=errors) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def write_json_atomic(path: Path, data: Any, indent: int | None = None) -> None:
    write_text_atomic(path, json.dumps(data, indent=indent, sort_keys=indent is None) + "\n")


def read_json(path: Path) -> Any | None:
    """Load a JSON document, or None if the file does not exist."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None


def remove_file(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
