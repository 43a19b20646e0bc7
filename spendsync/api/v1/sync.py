from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request

from spendsync.api.deps import CurrentUserId, get_orchestrator
from spendsync.core.config import get_settings
from spendsync.core.rate_limit import rate_limit
from spendsync.schemas.costs import AccountSyncResult, BatchSyncResult, SyncRequest
from spendsync.services.sync.orchestrator import SyncOrchestrator

router = APIRouter(tags=["Sync"])
logger = structlog.get_logger()
settings = get_settings()


@router.post("", response_model=BatchSyncResult)
@rate_limit(settings.SYNC_RATE_LIMIT)
async def sync_accounts(
    request: Request,
    user_id: CurrentUserId,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    body: SyncRequest | None = None,
):
    """
    Sync every active account (or one account / one provider's accounts).
    Always answers 200 with a success, partial or failure status per batch.
    """
    body = body or SyncRequest()
    return await orchestrator.sync_all(
        user_id,
        account_id=body.account_id,
        provider_id=body.provider_id,
        force=body.force,
    )


@router.post("/accounts/{account_id}", response_model=AccountSyncResult)
@rate_limit(settings.SYNC_RATE_LIMIT)
async def sync_single_account(
    request: Request,
    account_id: UUID,
    user_id: CurrentUserId,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    force: bool = Query(False, description="Bypass the cost cache"),
):
    """Sync one account; failures surface as that account's error and hint."""
    return await orchestrator.sync_account(user_id, account_id, force=force)
