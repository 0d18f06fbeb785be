"""Structured logging and pipeline observability."""
import logging
import structlog
import time
from typing import Any
from contextlib import contextmanager

from lifelog_ingestor.utils.config import settings


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


configure_logging(settings.log_level)

logger = structlog.get_logger()


def log_pipeline_stage(stage: str, run_id: str, **kwargs: Any) -> None:
    """Log ingestion stage with run context."""
    logger.info("pipeline_stage", stage=stage, run_id=run_id, **kwargs)


def log_latency(operation: str, latency_ms: float, **kwargs: Any) -> None:
    """Log latency for observability."""
    logger.info("latency", operation=operation, latency_ms=round(latency_ms, 2), **kwargs)


def log_anomaly(anomaly_type: str, details: str, **kwargs: Any) -> None:
    """Log detected anomaly."""
    logger.warning("anomaly", anomaly_type=anomaly_type, details=details, **kwargs)


@contextmanager
def measure_latency(operation: str, **context: Any):
    """Context manager to measure and log latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        log_latency(operation, latency_ms, **context)
