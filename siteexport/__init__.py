"""Site Export - resumable export of a content tree and its database into portable artifacts."""

__version__ = "0.1.0"

from siteexport.config import ExportConfig, ResourceBudget
from siteexport.exporter import ExportOrchestrator

__all__ = ["ExportConfig", "ResourceBudget", "ExportOrchestrator"]
