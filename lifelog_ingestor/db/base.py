"""Storage capability shared by every lifelog backend."""
from abc import ABC, abstractmethod
from datetime import datetime

from lifelog_ingestor.utils.schemas import IngestionResult, LifelogEntry, LifelogRecord, Stats


class LifelogStore(ABC):
    """Durable storage for lifelog records and ingestion run lineage.

    Engine faults surface as ``StorageError``; backends never retry.
    """

    @abstractmethod
    def create_tables(self) -> None:
        ...

    @abstractmethod
    def upsert_if_absent(self, entry: LifelogEntry) -> bool:
        """Store `entry` and its content items unless the id exists. True if newly stored."""

    @abstractmethod
    def latest_created_at(self) -> datetime | None:
        ...

    @abstractmethod
    def list_records(self, limit: int = 20, offset: int = 0) -> list[LifelogRecord]:
        """Newest first, ties broken by id."""

    @abstractmethod
    def list_unparsed(self) -> list[LifelogRecord]:
        """Oldest first."""

    @abstractmethod
    def mark_parsed(self, lifelog_id: str) -> bool:
        ...

    @abstractmethod
    def compute_stats(self) -> Stats:
        ...

    @abstractmethod
    def get_record(self, lifelog_id: str) -> LifelogRecord | None:
        """Point lookup including the content-item tree."""

    @abstractmethod
    def record_run(self, result: IngestionResult) -> None:
        ...

    @abstractmethod
    def list_runs(self, limit: int = 20) -> list[IngestionResult]:
        ...
