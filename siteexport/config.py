"""Configuration module for siteexport."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class ResourceBudget:
    """Limits for a single invocation before it pauses and yields."""

    time_budget_seconds: float = 25.0
    memory_fraction: float = 0.8
    memory_limit_bytes: int | None = None
    max_files_per_run: int | None = None


@dataclass
class ExportConfig:
    source_dir: Path
    database_path: Path
    export_dir: Path
    base_path_name: str = ""
    extra_exclusions: list[str] = field(default_factory=list)
    compress_sql: bool = True
    chunk_size: int = 512 * 1024
    db_page_size: int = 1000
    progress_interval: int = 1000
    lease_stale_seconds: float = 300.0
    stuck_threshold_seconds: float = 600.0
    max_restarts: int = 3
    budget: ResourceBudget = field(default_factory=ResourceBudget)

    def __post_init__(self) -> None:
        self.source_dir = Path(self.source_dir)
        self.database_path = Path(self.database_path)
        self.export_dir = Path(self.export_dir)
        if not self.base_path_name:
            self.base_path_name = self.source_dir.resolve().name or "content"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["source_dir"] = str(self.source_dir)
        data["database_path"] = str(self.database_path)
        data["export_dir"] = str(self.export_dir)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportConfig":
        values = dict(data)
        values["budget"] = ResourceBudget(**values.get("budget", {}))
        return cls(**values)
