"""Observability: stats, status payload, run summary and anomaly detection from the store."""
from typing import TYPE_CHECKING

from lifelog_ingestor.db.base import LifelogStore
from lifelog_ingestor.utils.logger import logger
from lifelog_ingestor.utils.schemas import Stats, utcnow

if TYPE_CHECKING:
    from lifelog_ingestor.pipeline.scheduler import IngestionScheduler


def compute_stats(store: LifelogStore) -> Stats:
    """Recomputed from storage on every call; nothing is cached."""
    return store.compute_stats()


def get_status(store: LifelogStore, scheduler: "IngestionScheduler | None" = None) -> dict:
    """Payload for GET /api/status."""
    ingestion = {"running": False, "last_run": None}
    if scheduler is not None:
        ingestion["running"] = scheduler.is_running
        if scheduler.last_result is not None:
            ingestion["last_run"] = scheduler.last_result.model_dump(mode="json")
    return {
        "status": "running",
        "stats": compute_stats(store).model_dump(mode="json"),
        "ingestion": ingestion,
        "timestamp": utcnow().isoformat(),
    }


def get_ingestion_run_summary(store: LifelogStore, limit: int = 20) -> list[dict]:
    """Recent runs with latency_seconds computed from started_at/finished_at."""
    out = []
    for run in store.list_runs(limit=limit):
        latency_seconds = None
        if run.started_at and run.finished_at:
            latency_seconds = round((run.finished_at - run.started_at).total_seconds(), 2)
        out.append({**run.model_dump(mode="json"), "latency_seconds": latency_seconds})
    return out


def detect_anomalies(run_summary: list[dict]) -> list[dict]:
    """Detect anomalies: failed runs and successful runs that fetched nothing."""
    anomalies = []
    for run in run_summary:
        if run["status"] == "failed":
            anomalies.append({"type": "failed_run", "run_id": run["run_id"], "error": run.get("error")})
        if run["status"] == "success" and run.get("fetched_count") == 0:
            anomalies.append({"type": "empty_fetch", "run_id": run["run_id"]})
    return anomalies


def log_ingestion_metrics(store: LifelogStore) -> dict:
    """Log stats and recent run latency; report anomalies."""
    stats = compute_stats(store)
    summary = get_ingestion_run_summary(store, limit=10)
    anomalies = detect_anomalies(summary)
    logger.info("lifelog_stats", **stats.model_dump(mode="json"))
    if latencies := [r["latency_seconds"] for r in summary if r.get("latency_seconds") is not None]:
        logger.info("ingestion_latency", avg_seconds=round(sum(latencies) / len(latencies), 2), max_seconds=round(max(latencies), 2), run_count=len(latencies))
    logger.info("observability_summary", runs=len(summary), anomalies=len(anomalies), anomaly_list=anomalies)
    return {"stats": stats, "runs": summary, "anomalies": anomalies}

