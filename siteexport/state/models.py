"""Data models for durable export state."""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class ExportStatus(Enum):
    """Coarse status published for the status-reporting layer."""

    STARTING = "starting"
    EXPORTING = "exporting"
    EXPORTING_DATABASE = "exporting_database"
    GENERATING_METADATA = "generating_metadata"
    FINALIZING = "finalizing"
    PAUSED = "paused"
    RESUMING = "resuming"
    DONE = "done"
    ERROR = "error"


IN_PROGRESS_STATUSES = frozenset(
    {
        ExportStatus.STARTING,
        ExportStatus.EXPORTING,
        ExportStatus.EXPORTING_DATABASE,
        ExportStatus.GENERATING_METADATA,
        ExportStatus.FINALIZING,
        ExportStatus.RESUMING,
    }
)


class ExportStep(Enum):
    """Steps of the export state machine, in order."""

    INIT = "init"
    CONTENT = "content"
    DATABASE = "database"
    METADATA = "metadata"
    FINALIZE = "finalize"
    DONE = "done"
    ERROR = "error"


STEP_ORDER = (
    ExportStep.INIT,
    ExportStep.CONTENT,
    ExportStep.DATABASE,
    ExportStep.METADATA,
    ExportStep.FINALIZE,
    ExportStep.DONE,
)


class PauseReason(Enum):
    TIME_BUDGET = "time_budget"
    MEMORY = "memory"
    FILE_BATCH = "file_batch"
    LEASE_HELD = "lease_held"


CHECKPOINT_FORMAT_VERSION = 1


@dataclass
class CheckpointRecord:
    """How far the archive pass has progressed."""

    manifest_read_offset: int = 0
    archive_write_offset: int = 0
    files_processed: int = 0
    bytes_processed: int = 0
    skipped_count: int = 0
    last_update: float = field(default_factory=time.time)
    format_version: int = CHECKPOINT_FORMAT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckpointRecord":
        return cls(
            manifest_read_offset=int(data["manifest_read_offset"]),
            archive_write_offset=int(data["archive_write_offset"]),
            files_processed=int(data.get("files_processed", 0)),
            bytes_processed=int(data.get("bytes_processed", 0)),
            skipped_count=int(data.get("skipped_count", 0)),
            last_update=float(data.get("last_update", 0.0)),
            format_version=int(data.get("format_version", 0)),
        )


@dataclass
class LeaseRecord:
    """Advisory ownership of the database dump."""

    started: float
    last_update: float
    pid: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaseRecord":
        return cls(
            started=float(data["started"]),
            last_update=float(data["last_update"]),
            pid=int(data["pid"]),
        )


@dataclass
class ArtifactNames:
    """Randomized artifact filenames, fixed for the lifetime of one export."""

    archive: str
    sql: str
    metadata: str
    log: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "ArtifactNames":
        return cls(
            archive=data["archive"], sql=data["sql"], metadata=data["metadata"], log=data["log"]
        )


@dataclass
class ExportState:
    """Persisted state of one export run, shared by every invocation."""

    export_id: str
    step: ExportStep
    filenames: ArtifactNames
    config: dict[str, Any]
    enumeration: dict[str, Any] | None = None
    restarts: int = 0
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "export_id": self.export_id,
            "step": self.step.value,
            "filenames": self.filenames.to_dict(),
            "config": self.config,
            "enumeration": self.enumeration,
            "restarts": self.restarts,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportState":
        return cls(
            export_id=data["export_id"],
            step=ExportStep(data["step"]),
            filenames=ArtifactNames.from_dict(data["filenames"]),
            config=data["config"],
            enumeration=data.get("enumeration"),
            restarts=int(data.get("restarts", 0)),
            error=data.get("error"),
            created_at=float(data.get("created_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
        )
