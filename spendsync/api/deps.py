"""
Request-scoped dependencies.

Authentication happens upstream; the gateway forwards the caller as X-User-Id.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException

from spendsync.db.session import async_session_maker
from spendsync.services.adapters.registry import AdapterRegistry, get_adapter_registry
from spendsync.services.analysis.anomaly import AnomalyBaselineEngine
from spendsync.services.sync.orchestrator import SyncOrchestrator


async def get_current_user_id(x_user_id: Annotated[Optional[str], Header()] = None) -> UUID:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")


def get_registry() -> AdapterRegistry:
    return get_adapter_registry()


def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator(async_session_maker)


def get_anomaly_engine() -> AnomalyBaselineEngine:
    return AnomalyBaselineEngine(async_session_maker)


CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
