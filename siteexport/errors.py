"""Exception hierarchy for export failures."""


class ExportError(Exception):
    """Base class for export errors."""


class FatalExportError(ExportError):
    """Systemic failure that stops the export until it is restarted from scratch."""


class SourceNotAccessibleError(FatalExportError):
    """Raised when the content tree cannot be read at all."""


class ManifestError(FatalExportError):
    """Raised when the file manifest cannot be created or read."""


class ArchiveOpenError(FatalExportError):
    """Raised when the archive file cannot be opened for writing."""


class ArchiveWriteError(FatalExportError):
    """Raised when a partially written block cannot be rolled back."""


class CheckpointMismatchError(FatalExportError):
    """Raised when the saved archive offset disagrees with the archive on disk."""


class MissingArtifactsError(FatalExportError):
    """Raised when finalization finds export artifacts missing."""


class HeaderError(ExportError):
    """Raised when a serialized header block has the wrong width."""


class NoExportError(ExportError):
    """Raised when no export state exists in the export directory."""


class DatabaseExportError(FatalExportError):
    """Raised when the database cannot be read or the dump cannot be written."""
