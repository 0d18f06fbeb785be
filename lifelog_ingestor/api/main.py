"""FastAPI app: lifelog status, listing, manual ingestion and parse marking."""
from contextlib import asynccontextmanager

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from lifelog_ingestor.db import LifelogStore, init_store
from lifelog_ingestor.pipeline.scheduler import IngestionScheduler
from lifelog_ingestor.utils.config import Settings, settings as default_settings
from lifelog_ingestor.utils.errors import StorageError
from lifelog_ingestor.utils.logger import logger
from lifelog_ingestor.utils.observability import detect_anomalies, get_ingestion_run_summary, get_status
from lifelog_ingestor.utils.schemas import IngestionWindow


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build whatever main() did not inject; stop only what was started here."""
    settings: Settings = app.state.settings
    owned_scheduler = None
    if app.state.store is None:
        app.state.store = init_store(settings)
    if app.state.scheduler is None:
        owned_scheduler = IngestionScheduler.from_settings(app.state.store, settings)
        owned_scheduler.start(run_immediately=True, recurring=settings.enable_scheduler)
        app.state.scheduler = owned_scheduler
    try:
        yield
    finally:
        if owned_scheduler is not None:
            await run_in_threadpool(owned_scheduler.stop)
            owned_scheduler.engine.source.close()


def create_app(
    store: LifelogStore | None = None,
    scheduler: IngestionScheduler | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Lifelog Ingestor API",
        description="Scheduled ingestion of Limitless lifelogs into a local store",
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.store = store
    app.state.scheduler = scheduler
    app.state.settings = settings or default_settings
    app.include_router(_api_routes(), prefix="/api")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


def get_lifelog_store(request: Request) -> LifelogStore:
    return request.app.state.store


def get_scheduler(request: Request) -> IngestionScheduler | None:
    return request.app.state.scheduler


def _api_routes() -> APIRouter:
    router = APIRouter()

    @router.get("/status")
    def status(
        store: LifelogStore = Depends(get_lifelog_store),
        scheduler: IngestionScheduler | None = Depends(get_scheduler),
    ):
        try:
            return get_status(store, scheduler)
        except StorageError:
            logger.exception("status_error")
            raise HTTPException(status_code=500, detail="Failed to get service status")

    @router.get("/lifelogs")
    def lifelogs(
        limit: int = Query(default=20, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        store: LifelogStore = Depends(get_lifelog_store),
    ):
        try:
            entries = store.list_records(limit=limit, offset=offset)
        except StorageError:
            logger.exception("list_lifelogs_error", limit=limit, offset=offset)
            raise HTTPException(status_code=500, detail="Failed to fetch lifelogs")
        return {"entries": [e.model_dump(mode="json", exclude={"contents"}) for e in entries]}

    @router.get("/lifelogs/{lifelog_id}")
    def lifelog(lifelog_id: str, store: LifelogStore = Depends(get_lifelog_store)):
        try:
            record = store.get_record(lifelog_id)
        except StorageError:
            logger.exception("get_lifelog_error", lifelog_id=lifelog_id)
            raise HTTPException(status_code=500, detail="Failed to fetch lifelog")
        if record is None:
            raise HTTPException(status_code=404, detail=f"Entry {lifelog_id} not found")
        return record.model_dump(mode="json")

    @router.post("/ingest")
    def ingest(
        options: IngestionWindow | None = Body(default=None),
        scheduler: IngestionScheduler | None = Depends(get_scheduler),
    ):
        """Fire and forget: the outcome is only visible in logs and later status queries."""
        logger.info("manual_ingestion_requested", options=options.model_dump() if options else None)
        if scheduler is None:
            raise HTTPException(status_code=503, detail="Ingestion scheduler is not available")
        if not scheduler.trigger(options):
            return JSONResponse(status_code=409, content={"status": "ingestion_in_progress"})
        return JSONResponse(status_code=202, content={"status": "ingestion_started"})

    @router.get("/unparsed")
    def unparsed(store: LifelogStore = Depends(get_lifelog_store)):
        try:
            entries = store.list_unparsed()
        except StorageError:
            logger.exception("list_unparsed_error")
            raise HTTPException(status_code=500, detail="Failed to fetch unparsed entries")
        return {"entries": [e.model_dump(mode="json", exclude={"contents"}) for e in entries]}

    @router.post("/mark-parsed/{lifelog_id}")
    def mark_parsed(lifelog_id: str, store: LifelogStore = Depends(get_lifelog_store)):
        try:
            updated = store.mark_parsed(lifelog_id)
        except StorageError:
            logger.exception("mark_parsed_error", lifelog_id=lifelog_id)
            raise HTTPException(status_code=500, detail="Failed to mark entry as parsed")
        if not updated:
            raise HTTPException(status_code=404, detail=f"Entry {lifelog_id} not found")
        return {"status": "success", "message": f"Entry {lifelog_id} marked as parsed"}

    @router.get("/runs")
    def runs(limit: int = Query(default=20, ge=1, le=200), store: LifelogStore = Depends(get_lifelog_store)):
        try:
            summary = get_ingestion_run_summary(store, limit=limit)
        except StorageError:
            logger.exception("list_runs_error")
            raise HTTPException(status_code=500, detail="Failed to fetch ingestion runs")
        return {"runs": summary, "anomalies": detect_anomalies(summary)}

    return router


app = create_app()
