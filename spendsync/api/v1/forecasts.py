from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from spendsync.api.deps import CurrentUserId
from spendsync.db.session import get_db
from spendsync.schemas.forecasts import (
    BaseForecast,
    ScenarioComputation,
    ScenarioCreate,
    ScenarioOut,
    ScenarioPreview,
    ScenarioUpdate,
)
from spendsync.services.analysis.forecaster import ForecastService
from spendsync.services.analysis.scenarios import ScenarioService

router = APIRouter(tags=["Forecasts"])


def get_scenario_service(db: AsyncSession = Depends(get_db)) -> ScenarioService:
    return ScenarioService(db)


ScenarioServiceDep = Annotated[ScenarioService, Depends(get_scenario_service)]


@router.get("", response_model=BaseForecast)
async def get_forecast(
    user_id: CurrentUserId,
    months: int = Query(6, ge=1, le=12),
    provider_id: Optional[str] = Query(None),
    account_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await ForecastService(db).get_forecast(user_id, months, provider_id, account_id)


@router.get("/scenarios", response_model=List[ScenarioOut])
async def list_scenarios(user_id: CurrentUserId, service: ScenarioServiceDep):
    return await service.list(user_id)


@router.post("/scenarios", response_model=ScenarioComputation, status_code=201)
async def create_scenario(data: ScenarioCreate, user_id: CurrentUserId, service: ScenarioServiceDep):
    return await service.create(user_id, data)


# Declared before /scenarios/{scenario_id} so "preview" is not parsed as an id
@router.post("/scenarios/preview", response_model=ScenarioComputation)
async def preview_scenario(data: ScenarioPreview, user_id: CurrentUserId, service: ScenarioServiceDep):
    """Evaluate an unsaved scenario against the current baseline."""
    return await service.preview(user_id, data)


@router.get("/scenarios/{scenario_id}", response_model=ScenarioOut)
async def get_scenario(scenario_id: UUID, user_id: CurrentUserId, service: ScenarioServiceDep):
    return ScenarioOut.model_validate(await service.get(user_id, scenario_id))


@router.put("/scenarios/{scenario_id}", response_model=ScenarioComputation)
async def update_scenario(scenario_id: UUID, data: ScenarioUpdate, user_id: CurrentUserId, service: ScenarioServiceDep):
    return await service.update(user_id, scenario_id, data)


@router.post("/scenarios/{scenario_id}/compute", response_model=ScenarioComputation)
async def compute_scenario(scenario_id: UUID, user_id: CurrentUserId, service: ScenarioServiceDep):
    return await service.compute(user_id, scenario_id)


@router.delete("/scenarios/{scenario_id}", status_code=204)
async def delete_scenario(scenario_id: UUID, user_id: CurrentUserId, service: ScenarioServiceDep):
    await service.delete(user_id, scenario_id)
    return Response(status_code=204)
