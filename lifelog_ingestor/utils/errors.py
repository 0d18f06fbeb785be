"""Error taxonomy for fetch, storage and ingestion failures."""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lifelog_ingestor.utils.schemas import IngestionResult


class LifelogIngestorError(Exception):
    """Base class for all errors raised by the ingestor."""


class FetchError(LifelogIngestorError):
    """Upstream network, auth, rate-limit or timeout failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(LifelogIngestorError):
    """Persistence engine failure."""


class IngestionError(LifelogIngestorError):
    """A run failed part way; `result` holds the tally accumulated before the failure."""

    def __init__(self, message: str, result: "IngestionResult"):
        super().__init__(message)
        self.result = result
