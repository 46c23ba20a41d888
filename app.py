import asyncio
import logging
import os
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager

import config
from db import Base, engine
from errors import PCBInspectError, pcb_inspect_error_handler, unhandled_error_handler
from infra import RateLimitMiddleware, purge_expired_revocations
from logger import setup_logging
from services import storage
from services.detection_client import close_detection_client

from controllers import (
    upload_controller,
    results_controller,
    dashboard_controller,
    session_controller,
)

setup_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # create tables once at startup
    from models import User, RevokedToken, DetectionRecord, DefectPrediction, DailySummary  # noqa: F401

    Base.metadata.create_all(bind=engine)

    # daily purge of revocations whose token has expired anyway
    async def _cleanup_loop():
        while True:
            try:
                purge_expired_revocations()
            except Exception:
                logger.exception("Revocation purge failed")
            await asyncio.sleep(24 * 3600)

    cleanup_task = asyncio.create_task(_cleanup_loop())
    try:
        yield
    finally:
        cleanup_task.cancel()
        close_detection_client()


app = FastAPI(lifespan=lifespan)

# global rate limits + headers
app.add_middleware(RateLimitMiddleware)  # reads RPS_LIMIT / UPLOADS_PER_MIN

app.add_exception_handler(PCBInspectError, pcb_inspect_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

# local storage mode serves ingested images itself
if not storage.AWS_S3_BUCKET:
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR), name="uploads")


@app.get("/health")
def health():  # pragma: no cover
    return {"status": "ok"}


# Register routers
app.include_router(upload_controller.router)
app.include_router(results_controller.router)
app.include_router(dashboard_controller.router)
app.include_router(session_controller.router)

if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
