"""
contasync: FastAPI application entry point.

Builds the sync services once at startup and exposes their status to the
surrounding application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from contasync.api.sync_routes import router as sync_router
from contasync.config.settings import settings
from contasync.storage.database import init_db
from contasync.sync.services import build_services

handlers = [logging.StreamHandler()]
if settings.log_file:
    handlers.append(logging.FileHandler(settings.log_file))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=handlers,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("contasync starting...")
    init_db()
    services = build_services()
    app.state.sync_services = services
    if not services.scheduler.is_offline_mode_initialized:
        services.scheduler.initialize_offline_mode()
    services.scheduler.cleanup_old_sync_data()
    if settings.sync_enabled:
        await services.scheduler.start_auto_sync()
        logger.info("Sync engine initialized (device: %s)", services.device.get())
    else:
        logger.info("Cloud sync disabled; working from the local store only")
    logger.info(f"API ready at http://{settings.api_host}:{settings.api_port}")
    yield
    logger.info("contasync shutting down...")
    await services.scheduler.stop_auto_sync()


app = FastAPI(
    title="contasync",
    description="Offline-first change synchronization",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(sync_router)


@app.get("/health")
def health():
    return {"status": "ok", "version": VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "contasync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
