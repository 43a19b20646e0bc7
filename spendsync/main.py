from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from spendsync.api.v1.anomalies import router as anomalies_router
from spendsync.api.v1.forecasts import router as forecasts_router
from spendsync.api.v1.sync import router as sync_router
from spendsync.api.v1.system import router as system_router
from spendsync.core.concurrency import drain_background_tasks
from spendsync.core.config import get_settings
from spendsync.core.exceptions import SpendSyncException
from spendsync.core.logging import setup_logging
from spendsync.core.rate_limit import setup_rate_limiting
from spendsync.core.tracing import TraceIdMiddleware, get_current_trace_id
from spendsync.db.session import async_session_maker
from spendsync.services.scheduler import SyncScheduler

# Configure logging
setup_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("app_starting", app=settings.APP_NAME, version=settings.VERSION)

    scheduler = SyncScheduler(async_session_maker)
    if settings.SCHEDULER_ENABLED and not settings.TESTING:
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("app_stopping", app=settings.APP_NAME)
    scheduler.stop()
    # Let in-flight anomaly/optimization recomputes finish
    await drain_background_tasks(timeout=30)


settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)

Instrumentator().instrument(app).expose(app)

app.add_middleware(TraceIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS or [settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)


@app.exception_handler(SpendSyncException)
async def spendsync_exception_handler(request: Request, exc: SpendSyncException):
    logger.warning(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    body = {"error": exc.to_dict()}
    trace_id = get_current_trace_id()
    if trace_id:
        body["trace_id"] = trace_id
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(system_router, prefix="/api/v1")
app.include_router(sync_router, prefix="/api/v1/sync")
app.include_router(forecasts_router, prefix="/api/v1/forecasts")
app.include_router(anomalies_router, prefix="/api/v1/anomalies")
