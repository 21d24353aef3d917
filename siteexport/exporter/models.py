"""Results passed between export steps and to callers."""

from dataclasses import dataclass, field
from typing import Any

from siteexport.state.models import ExportStep, PauseReason


@dataclass
class StepOutcome:
    """Result of running one step: either completed, or paused with a reason."""

    completed: bool
    reason: PauseReason | None = None

    @classmethod
    def done(cls) -> "StepOutcome":
        return cls(completed=True)

    @classmethod
    def paused(cls, reason: PauseReason) -> "StepOutcome":
        return cls(completed=False, reason=reason)


@dataclass
class RunResult:
    """What one orchestrator invocation did."""

    status: str
    step: ExportStep
    pause_reason: PauseReason | None = None
    error: str | None = None
    busy: bool = False
    retry_after: float = 0.0

    @property
    def finished(self) -> bool:
        return self.step is ExportStep.DONE

    @property
    def needs_continuation(self) -> bool:
        return not self.busy and self.step not in (ExportStep.DONE, ExportStep.ERROR)


@dataclass
class StatusReport:
    """Snapshot for the status-reporting layer."""

    status: str | None
    step: ExportStep | None
    files_processed: int = 0
    bytes_processed: int = 0
    last_update: float | None = None
    idle_seconds: float | None = None
    restarts: int = 0
    enumeration: dict[str, Any] | None = None
    recent_log: list[str] = field(default_factory=list)
    artifacts: dict[str, dict[str, Any]] = field(default_factory=dict)
