"""Export steps, orchestration and continuation."""

from .content import ContentExporter
from .metadata import MetadataCollector, SiteMetadataCollector
from .models import RunResult, StatusReport, StepOutcome
from .orchestrator import ExportOrchestrator, MonitorAction
from .triggers import ContinuationTrigger, NullTrigger, SubprocessTrigger

__all__ = [
    "ContentExporter",
    "MetadataCollector",
    "SiteMetadataCollector",
    "RunResult",
    "StatusReport",
    "StepOutcome",
    "ExportOrchestrator",
    "MonitorAction",
    "ContinuationTrigger",
    "NullTrigger",
    "SubprocessTrigger",
]
