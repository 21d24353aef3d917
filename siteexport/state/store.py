"""Well-known files of an export directory and the persisted export state."""

import json
import logging
import secrets
import time
from datetime import datetime
from pathlib import Path

from siteexport.archive.format import FILE_EXTENSION
from siteexport.errors import NoExportError
from siteexport.state.jsonfile import read_json, remove_file, write_json_atomic
from siteexport.state.models import ArtifactNames, ExportState

logger = logging.getLogger(__name__)

STATE_FILENAME = "export-state.json"
CHECKPOINT_FILENAME = "export-resume-info.json"
STATUS_FILENAME = "export-status.txt"
LOCK_FILENAME = "db-export.lock"
MANIFEST_FILENAME = "export-manifest.csv"


class ExportLayout:
    """Paths of the working and artifact files inside one export directory."""

    def __init__(self, export_dir: Path):
        self.export_dir = Path(export_dir)

    @property
    def state_path(self) -> Path:
        return self.export_dir / STATE_FILENAME

    @property
    def checkpoint_path(self) -> Path:
        return self.export_dir / CHECKPOINT_FILENAME

    @property
    def status_path(self) -> Path:
        return self.export_dir / STATUS_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.export_dir / LOCK_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.export_dir / MANIFEST_FILENAME

    def artifact_paths(self, names: ArtifactNames) -> dict[str, Path]:
        return {kind: self.export_dir / name for kind, name in names.to_dict().items()}

    def working_files(self) -> list[Path]:
        return [
            self.checkpoint_path,
            self.status_path,
            self.lock_path,
            self.lock_path.with_name(self.lock_path.name + ".owner.json"),
            self.manifest_path,
            self.manifest_path.with_name(self.manifest_path.name + ".partial"),
        ]


def generate_secure_filename(kind: str, compress: bool = True) -> str:
    """Unguessable artifact filename for the given artifact kind."""
    random_string = secrets.token_hex(8)
    timestamp_str = f"{time.time():.6f}".replace(".", "")
    date = datetime.now().strftime("%Y%m%d-%H%M%S")
    stem = f"{random_string}_{timestamp_str}_{date}"

    if kind == "archive":
        return f"content_{stem}.{FILE_EXTENSION}"
    if kind == "sql":
        extension = "sql.gz" if compress else "sql"
        return f"db_{stem}.{extension}"
    if kind == "metadata":
        return f"meta_{stem}.json"
    if kind == "log":
        return f"log_{stem}.txt"
    return f"export_{stem}.{kind}"


def generate_artifact_names(compress: bool = True) -> ArtifactNames:
    return ArtifactNames(
        archive=generate_secure_filename("archive"),
        sql=generate_secure_filename("sql", compress),
        metadata=generate_secure_filename("metadata"),
        log=generate_secure_filename("log"),
    )


class StateStore:
    """Loads and saves ExportState as JSON in the export directory."""

    def __init__(self, layout: ExportLayout):
        self.layout = layout

    @property
    def path(self) -> Path:
        return self.layout.state_path

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ExportState:
        try:
            data = read_json(self.path)
        except (OSError, json.JSONDecodeError) as e:
            raise NoExportError(f"Cannot read export state {self.path}: {e}") from e
        if data is None:
            raise NoExportError(f"No export found in {self.layout.export_dir}")
        return ExportState.from_dict(data)

    def save(self, state: ExportState) -> None:
        state.updated_at = time.time()
        write_json_atomic(self.path, state.to_dict())

    def clear(self) -> None:
        remove_file(self.path)
