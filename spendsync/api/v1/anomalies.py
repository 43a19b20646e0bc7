from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from spendsync.api.deps import CurrentUserId, get_anomaly_engine
from spendsync.schemas.anomalies import AnomalyOut
from spendsync.services.analysis.anomaly import AnomalyBaselineEngine

router = APIRouter(tags=["Anomalies"])


@router.get("", response_model=List[AnomalyOut])
async def list_anomalies(
    user_id: CurrentUserId,
    engine: Annotated[AnomalyBaselineEngine, Depends(get_anomaly_engine)],
    threshold: Optional[float] = Query(None, ge=0, description="Minimum absolute variance percent (default 20)"),
    provider_id: Optional[str] = Query(None),
    account_id: Optional[UUID] = Query(None),
    service: Optional[str] = Query(None),
    days: int = Query(7, ge=1, le=90),
):
    """Recent cost anomalies, most significant first."""
    return await engine.get_anomalies(
        user_id,
        threshold_percent=threshold,
        provider_id=provider_id,
        account_id=account_id,
        service=service,
        days=days,
    )
