"""Error types raised by the ingestion pipeline."""

from typing import Optional


class IngestError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class ConfigError(IngestError):
    """Source is missing credentials or required options."""


class MappingError(IngestError):
    """A raw record is missing a required canonical field."""

    def __init__(self, message: str, field: str, source: Optional[str] = None):
        super().__init__(message, source)
        self.field = field


class FetchError(IngestError):
    """A network fetch failed or returned a non-success status."""

    def __init__(
        self,
        message: str,
        url: str,
        status: Optional[int] = None,
        source: Optional[str] = None,
    ):
        super().__init__(message, source)
        self.url = url
        self.status = status


class DuplicateKeyError(IngestError):
    """Storage rejected an insert because (source, sourceId) already exists."""

    def __init__(self, source: str, source_id: str):
        super().__init__(f"Duplicate key {source}:{source_id}", source)
        self.source_id = source_id


class StorageError(IngestError):
    """Storage is unreachable or rejected a write for a non-key reason."""


class RunCancelledError(IngestError):
    """The run was cancelled before this fetch could start."""
