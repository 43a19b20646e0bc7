from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spendsync.api.deps import get_registry
from spendsync.core.config import get_settings
from spendsync.db.session import get_db
from spendsync.services.adapters.cost_cache import get_cost_cache
from spendsync.services.adapters.registry import AdapterRegistry

router = APIRouter(tags=["System"])
logger = structlog.get_logger()


@router.get("/providers")
async def list_providers(registry: Annotated[AdapterRegistry, Depends(get_registry)]):
    """Registered billing providers and the credential fields each one needs."""
    return {"providers": registry.supported()}


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    settings = get_settings()
    checks = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.error("health_database_failed", error=str(e))
        checks["database"] = "error"

    checks["cache"] = "ok" if await get_cost_cache().health_check() else "error"

    scheduler = getattr(request.app.state, "scheduler", None)
    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "checks": checks,
            "scheduler": scheduler.get_status() if scheduler else None,
        },
    )
