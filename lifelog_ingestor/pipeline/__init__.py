from .client import LimitlessClient
from .ingest import IngestionEngine, local_timezone_name
from .scheduler import IngestionScheduler

__all__ = [
    "LimitlessClient",
    "IngestionEngine",
    "IngestionScheduler",
    "local_timezone_name",
]
