"""Process entrypoint: init store, start the scheduler, serve the API."""
import signal
import socket
import sys
import threading

import uvicorn

from lifelog_ingestor.api.main import create_app
from lifelog_ingestor.db import LifelogStore, init_store
from lifelog_ingestor.pipeline.client import LimitlessClient
from lifelog_ingestor.pipeline.ingest import IngestionEngine
from lifelog_ingestor.pipeline.scheduler import IngestionScheduler
from lifelog_ingestor.utils.config import Settings, settings as default_settings
from lifelog_ingestor.utils.errors import StorageError
from lifelog_ingestor.utils.logger import logger
from lifelog_ingestor.utils.observability import log_ingestion_metrics


def port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(host: str, preferred: int, alternatives: list[int]) -> int | None:
    if port_is_free(host, preferred):
        return preferred
    logger.warning("port_in_use", port=preferred)
    for port in alternatives:
        if port_is_free(host, port):
            logger.info("using_alternative_port", port=port)
            return port
        logger.warning("alternative_port_in_use", port=port)
    return None


def wait_for_shutdown_signal() -> None:
    stop = threading.Event()

    def handler(signum, frame):
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)
    stop.wait()


def serve(store: LifelogStore, scheduler: IngestionScheduler, settings: Settings) -> None:
    """Blocks until SIGINT/SIGTERM. uvicorn owns the signals while the server runs."""
    if settings.enable_server:
        port = find_available_port(settings.api_host, settings.api_port, settings.alternative_ports)
        if port is not None:
            app = create_app(store=store, scheduler=scheduler, settings=settings)
            logger.info("server_listening", host=settings.api_host, port=port)
            uvicorn.run(app, host=settings.api_host, port=port, log_level=settings.log_level.lower())
            return
        logger.error("no_port_available", preferred=settings.api_port, alternatives=settings.alternative_ports)
    wait_for_shutdown_signal()


def main(settings: Settings | None = None) -> int:
    settings = settings or default_settings
    logger.info(
        "environment_loaded",
        limitless_api_key="yes" if settings.limitless_api_key else "no",
        db_type=settings.db_type,
        port=settings.api_port,
    )
    try:
        store = init_store(settings)
    except StorageError as e:
        logger.error("database_init_failed", error=str(e))
        return 1
    logger.info("database_initialized")
    log_ingestion_metrics(store)

    client = LimitlessClient.from_settings(settings)
    engine = IngestionEngine(store=store, source=client, default_timezone=settings.timezone)
    scheduler = IngestionScheduler(engine, schedule=settings.ingestion_schedule)
    scheduler.start(run_immediately=True, recurring=settings.enable_scheduler)
    try:
        serve(store, scheduler, settings)
    finally:
        logger.info("stopping_services")
        scheduler.stop(wait=True)
        client.close()
        logger.info("all_services_stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
