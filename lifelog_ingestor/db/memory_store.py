"""In-process lifelog store for tests and throwaway runs. Nothing survives a restart."""
import threading
from datetime import datetime

from lifelog_ingestor.db.base import LifelogStore
from lifelog_ingestor.utils.schemas import IngestionResult, LifelogEntry, LifelogRecord, Stats, utcnow


class InMemoryLifelogStore(LifelogStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, LifelogRecord] = {}
        self._runs: dict[str, IngestionResult] = {}

    def create_tables(self) -> None:
        pass

    def upsert_if_absent(self, entry: LifelogEntry) -> bool:
        with self._lock:
            if entry.id in self._records:
                return False
            self._records[entry.id] = LifelogRecord(
                id=entry.id,
                title=entry.title,
                markdown=entry.markdown,
                raw_payload=dict(entry.raw_payload),
                created_at=entry.created_at,
                ingested_at=utcnow(),
                contents=[c.model_copy(deep=True) for c in entry.contents],
            )
            return True

    def latest_created_at(self) -> datetime | None:
        with self._lock:
            return max((r.created_at for r in self._records.values()), default=None)

    def _snapshot(self) -> list[LifelogRecord]:
        with self._lock:
            return [r.model_copy(deep=True, update={"contents": []}) for r in self._records.values()]

    def list_records(self, limit: int = 20, offset: int = 0) -> list[LifelogRecord]:
        records = sorted(self._snapshot(), key=lambda r: (r.created_at, r.id), reverse=True)
        return records[offset:offset + limit]

    def list_unparsed(self) -> list[LifelogRecord]:
        return sorted((r for r in self._snapshot() if not r.parsed), key=lambda r: (r.created_at, r.id))

    def mark_parsed(self, lifelog_id: str) -> bool:
        with self._lock:
            record = self._records.get(lifelog_id)
            if record is None:
                return False
            record.parsed = True
            record.parsed_at = utcnow()
            return True

    def compute_stats(self) -> Stats:
        with self._lock:
            records = list(self._records.values())
            parsed = sum(1 for r in records if r.parsed)
            latest = max((r.created_at for r in records), default=None)
        return Stats(total=len(records), parsed=parsed, unparsed=len(records) - parsed, latest=latest)

    def get_record(self, lifelog_id: str) -> LifelogRecord | None:
        with self._lock:
            record = self._records.get(lifelog_id)
            return record.model_copy(deep=True) if record else None

    def record_run(self, result: IngestionResult) -> None:
        with self._lock:
            self._runs[result.run_id] = result.model_copy(deep=True)

    def list_runs(self, limit: int = 20) -> list[IngestionResult]:
        with self._lock:
            runs = list(self._runs.values())
        return sorted(runs, key=lambda r: r.started_at, reverse=True)[:limit]
