from .config import settings, Settings
from .errors import FetchError, IngestionError, LifelogIngestorError, StorageError
from .logger import logger, log_pipeline_stage, log_latency, log_anomaly, measure_latency

__all__ = [
    "settings",
    "Settings",
    "FetchError",
    "IngestionError",
    "LifelogIngestorError",
    "StorageError",
    "logger",
    "log_pipeline_stage",
    "log_latency",
    "log_anomaly",
    "measure_latency",
]
