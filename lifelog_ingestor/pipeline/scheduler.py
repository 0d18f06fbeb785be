"""Recurring and on-demand ingestion sharing a single execution slot.

A cron tick that finds a run in progress is dropped. A manual trigger that
finds a run in progress is refused and reported as busy. Nothing is queued.
"""
import threading
import uuid

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from lifelog_ingestor.db.base import LifelogStore
from lifelog_ingestor.pipeline.client import LimitlessClient
from lifelog_ingestor.pipeline.ingest import IngestionEngine
from lifelog_ingestor.utils.config import Settings, settings as default_settings
from lifelog_ingestor.utils.errors import IngestionError
from lifelog_ingestor.utils.logger import logger
from lifelog_ingestor.utils.schemas import IngestionResult, IngestionWindow

SCHEDULED_JOB_ID = "scheduled_ingestion"


class IngestionScheduler:
    def __init__(
        self,
        engine: IngestionEngine,
        schedule: str = "*/30 * * * *",
        scheduler: BackgroundScheduler | None = None,
    ):
        self.engine = engine
        self.schedule = schedule
        self._trigger = CronTrigger.from_crontab(schedule)
        self._scheduler = scheduler or BackgroundScheduler()
        self._slot = threading.Lock()
        self._lifecycle = threading.Lock()
        self._stopped = False
        self.last_result: IngestionResult | None = None

    @classmethod
    def from_settings(cls, store: LifelogStore, settings: Settings | None = None) -> "IngestionScheduler":
        settings = settings or default_settings
        engine = IngestionEngine(
            store=store,
            source=LimitlessClient.from_settings(settings),
            default_timezone=settings.timezone,
        )
        return cls(engine, schedule=settings.ingestion_schedule)

    @property
    def is_running(self) -> bool:
        return self._slot.locked()

    def start(self, run_immediately: bool = True, recurring: bool = True) -> None:
        """Start the executor. Manual triggers work even when `recurring` is off."""
        if recurring:
            self._scheduler.add_job(
                self._tick,
                trigger=self._trigger,
                id=SCHEDULED_JOB_ID,
                name="Scheduled lifelog ingestion",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info("ingestion_scheduler_started", schedule=self.schedule if recurring else None)
        if run_immediately:
            logger.info("initial_ingestion")
            self.trigger(reason="startup")

    def trigger(self, options: IngestionWindow | None = None, reason: str = "manual") -> bool:
        """Dispatch a run and return at once. False if a run is already in flight or we are stopped."""
        with self._lifecycle:
            if self._stopped:
                logger.warning("ingestion_trigger_refused", reason=reason, cause="scheduler_stopped")
                return False
            if not self._slot.acquire(blocking=False):
                logger.info("ingestion_already_running", reason=reason)
                return False
            try:
                self._scheduler.add_job(
                    self._run_in_slot,
                    args=[options, reason],
                    id=f"ingestion_{reason}_{uuid.uuid4().hex[:8]}",
                    misfire_grace_time=None,
                )
            except Exception:
                self._slot.release()
                raise
        logger.info("ingestion_started", reason=reason, options=options.model_dump() if options else None)
        return True

    def _tick(self) -> None:
        if not self._slot.acquire(blocking=False):
            logger.info("ingestion_tick_skipped", cause="run_in_progress")
            return
        self._run_in_slot(None, "scheduled")

    def _run_in_slot(self, options: IngestionWindow | None, reason: str) -> None:
        """Caller holds the slot; it is released here whatever the outcome."""
        try:
            result = self.engine.run(options)
            self.last_result = result
            logger.info(
                "ingestion_completed",
                reason=reason,
                stored=result.stored_count,
                skipped=result.skipped_count,
            )
        except IngestionError as e:
            self.last_result = e.result
            logger.error("ingestion_run_failed", reason=reason, error=str(e))
        except Exception:
            logger.exception("ingestion_run_crashed", reason=reason)
        finally:
            self._slot.release()

    def stop(self, wait: bool = True) -> None:
        """Cancel future ticks; with `wait`, block until an in-flight run finishes.

        No trigger can dispatch once the stopped flag is set. A dispatched job
        that the executor never picked up would keep the slot, so after a
        waiting shutdown the slot is released if still held.
        """
        with self._lifecycle:
            if self._stopped:
                return
            self._stopped = True
            if self._scheduler.running:
                self._scheduler.shutdown(wait=wait)
            if wait and self._slot.locked():
                logger.warning("ingestion_slot_released", cause="job_never_ran")
                self._slot.release()
        logger.info("ingestion_scheduler_stopped")
