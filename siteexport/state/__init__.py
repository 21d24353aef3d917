"""Durable export state: checkpoint, status, budget and persisted run state."""

from .budget import PauseController
from .checkpoint import CheckpointStore
from .models import (
    ArtifactNames,
    CheckpointRecord,
    ExportState,
    ExportStatus,
    ExportStep,
    LeaseRecord,
    PauseReason,
)
from .status import StatusFile
from .store import ExportLayout, StateStore, generate_artifact_names, generate_secure_filename

__all__ = [
    "PauseController",
    "CheckpointStore",
    "ArtifactNames",
    "CheckpointRecord",
    "ExportState",
    "ExportStatus",
    "ExportStep",
    "LeaseRecord",
    "PauseReason",
    "StatusFile",
    "ExportLayout",
    "StateStore",
    "generate_artifact_names",
    "generate_secure_filename",
]
