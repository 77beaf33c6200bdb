import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .competency_routes import (
    get_competency_service,
    peek_competency_service,
    router as competency_router,
    sync_router,
)
from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    service = None
    if settings.database_url and settings.sync_autostart:
        service = get_competency_service()
        service.start()
    try:
        yield
    finally:
        if service is not None:
            report = await service.stop(flush=True)
            if report is not None and report.dropped:
                logger.warning("Shutdown flush dropped %s updates", report.dropped)


app = FastAPI(title="Competency Engine", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(competency_router)
app.include_router(sync_router)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "ok",
        "sync_interval_seconds": settings.sync_interval_seconds,
        "persistence_mode": "database" if settings.database_url else "unconfigured",
    }
    service = peek_competency_service()
    if service is not None:
        payload["sync"] = service.sync_loop.status
        payload["cache"] = service.get_cache_stats().model_dump()
    return payload


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect():
            pass
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "persistence_mode": "database",
        "pool": get_pool_snapshot(engine),
    }
