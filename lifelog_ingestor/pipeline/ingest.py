"""Ingestion run: pick a window, fetch upstream, store what is new."""
import os
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lifelog_ingestor.db.base import LifelogStore
from lifelog_ingestor.utils.errors import IngestionError, StorageError
from lifelog_ingestor.utils.logger import log_anomaly, log_latency, log_pipeline_stage, logger
from lifelog_ingestor.utils.schemas import IngestionResult, IngestionWindow, LifelogEntry, utcnow

CATCH_UP_OVERLAP = timedelta(days=1)
BOOTSTRAP_LOOKBACK = timedelta(days=7)


class LifelogSource(Protocol):
    def fetch_batch(self, window: IngestionWindow) -> list[LifelogEntry]:
        ...

    def close(self) -> None:
        ...


def is_zone_key(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def local_timezone_name() -> str:
    """IANA name of the process timezone, falling back to UTC.

    POSIX TZ strings such as `UTC0` are not zone keys and are skipped.
    """
    tz = os.environ.get("TZ", "").lstrip(":")
    if tz and is_zone_key(tz):
        return tz
    try:
        target = str(Path("/etc/localtime").resolve())
    except OSError:
        target = ""
    if "zoneinfo/" in target:
        name = target.split("zoneinfo/", 1)[1]
        if is_zone_key(name):
            return name
    return "UTC"


class IngestionEngine:
    def __init__(
        self,
        store: LifelogStore,
        source: LifelogSource,
        default_timezone: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.source = source
        self.default_timezone = default_timezone
        self.clock = clock

    def compute_window(self, options: IngestionWindow | None = None) -> IngestionWindow:
        """Fill in start and timezone when the caller left them out.

        Catch-up starts one day before the newest stored record so late or
        out-of-order upstream records are picked up; upsert-if-absent makes
        the overlap harmless.
        """
        window = options.model_copy() if options else IngestionWindow()
        if not window.date and not window.start:
            latest = self.store.latest_created_at()
            if latest is not None:
                window.start = (latest - CATCH_UP_OVERLAP).date().isoformat()
                logger.info("catch_up_window", start=window.start, latest=latest.isoformat())
            else:
                window.start = (self.clock() - BOOTSTRAP_LOOKBACK).date().isoformat()
                logger.info("bootstrap_window", start=window.start)
        if not window.timezone:
            window.timezone = self.default_timezone or local_timezone_name()
        return window

    def run(self, options: IngestionWindow | None = None, run_id: str | None = None) -> IngestionResult:
        run_id = run_id or str(uuid.uuid4())
        result = IngestionResult(run_id=run_id, started_at=self.clock())
        log_pipeline_stage("ingest_start", run_id=run_id)

        try:
            result.window = self.compute_window(options)
            entries = self.source.fetch_batch(result.window)
            result.fetched_count = len(entries)
            log_pipeline_stage("fetch", run_id=run_id, count=len(entries))

            for entry in entries:
                if self.store.upsert_if_absent(entry):
                    result.stored_count += 1
                else:
                    result.skipped_count += 1
        except Exception as e:
            result.status = "failed"
            result.error = str(e)
            result.finished_at = self.clock()
            log_anomaly(
                "ingestion_failed",
                str(e),
                run_id=run_id,
                error_type=type(e).__name__,
                stored=result.stored_count,
                skipped=result.skipped_count,
            )
            self._record(result)
            raise IngestionError(f"Ingestion run {run_id} failed: {e}", result) from e

        result.status = "success"
        result.finished_at = self.clock()
        if result.fetched_count == 0:
            log_anomaly("empty_fetch", "Upstream returned no lifelogs", run_id=run_id)
        log_pipeline_stage(
            "ingest_complete",
            run_id=run_id,
            fetched=result.fetched_count,
            stored=result.stored_count,
            skipped=result.skipped_count,
        )
        log_latency("ingestion_run", (result.finished_at - result.started_at).total_seconds() * 1000, run_id=run_id)
        self._record(result)
        return result

    def _record(self, result: IngestionResult) -> None:
        """Lineage write failures are logged, never raised."""
        try:
            self.store.record_run(result)
        except StorageError as e:
            log_anomaly("lineage_write_failed", str(e), run_id=result.run_id)
