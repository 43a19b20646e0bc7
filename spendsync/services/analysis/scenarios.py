import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spendsync.core.exceptions import ResourceNotFoundError
from spendsync.models.forecast_scenario import ForecastScenario
from spendsync.schemas.forecasts import (
    ScenarioAdjustment,
    ScenarioComputation,
    ScenarioCreate,
    ScenarioOut,
    ScenarioPreview,
    ScenarioUpdate,
)
from spendsync.services.adapters.registry import get_adapter_registry
from spendsync.services.analysis.forecaster import ForecastService, apply_scenario, build_narrative

logger = structlog.get_logger()


def _canonical_provider(provider_id: Optional[str]) -> Optional[str]:
    if not provider_id:
        return None
    return get_adapter_registry().resolve_tag(provider_id)


class ScenarioService:
    """
    CRUD for what-if scenarios. Only definitions are stored; every read that
    returns a scenario forecast recomputes it against the current baseline.
    """

    def __init__(self, db: AsyncSession, forecast_service: Optional[ForecastService] = None):
        self.db = db
        self.forecasts = forecast_service or ForecastService(db)

    async def _evaluate(
        self,
        user_id: uuid.UUID,
        name: str,
        adjustments: Sequence[ScenarioAdjustment],
        months: int,
        provider_id: Optional[str],
        account_id: Optional[uuid.UUID],
    ) -> ScenarioComputation:
        base = await self.forecasts.get_forecast(user_id, months, provider_id, account_id)
        scenario_months = apply_scenario(base.months, adjustments, base.service_shares)
        return ScenarioComputation(
            base_forecast=base.months,
            scenario_forecast=scenario_months,
            narrative=build_narrative(name, base.months, scenario_months, adjustments),
            confidence=base.confidence,
        )

    async def _compute_and_stamp(self, user_id: uuid.UUID, scenario: ForecastScenario) -> ScenarioComputation:
        adjustments = [ScenarioAdjustment.model_validate(a) for a in scenario.adjustments or []]
        result = await self._evaluate(
            user_id,
            scenario.name,
            adjustments,
            scenario.forecast_months,
            scenario.provider_filter,
            scenario.account_filter,
        )
        scenario.last_computed_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(scenario)
        result.scenario = ScenarioOut.model_validate(scenario)
        return result

    async def get(self, user_id: uuid.UUID, scenario_id: uuid.UUID) -> ForecastScenario:
        result = await self.db.execute(
            select(ForecastScenario).where(
                ForecastScenario.id == scenario_id,
                ForecastScenario.user_id == user_id,
            )
        )
        scenario = result.scalar_one_or_none()
        if not scenario:
            raise ResourceNotFoundError(f"Scenario {scenario_id} not found")
        return scenario

    async def list(self, user_id: uuid.UUID) -> List[ScenarioOut]:
        result = await self.db.execute(
            select(ForecastScenario)
            .where(ForecastScenario.user_id == user_id)
            .order_by(ForecastScenario.created_at.desc())
        )
        return [ScenarioOut.model_validate(s) for s in result.scalars().all()]

    async def create(self, user_id: uuid.UUID, data: ScenarioCreate) -> ScenarioComputation:
        scenario = ForecastScenario(
            user_id=user_id,
            name=data.name,
            description=data.description,
            adjustments=[a.model_dump(mode="json") for a in data.adjustments],
            forecast_months=data.forecast_months,
            provider_filter=_canonical_provider(data.provider_id),
            account_filter=data.account_id,
        )
        self.db.add(scenario)
        await self.db.flush()
        logger.info("scenario_created", user_id=str(user_id), scenario_id=str(scenario.id))
        return await self._compute_and_stamp(user_id, scenario)

    async def update(self, user_id: uuid.UUID, scenario_id: uuid.UUID, data: ScenarioUpdate) -> ScenarioComputation:
        scenario = await self.get(user_id, scenario_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes and data.name is not None:
            scenario.name = data.name
        if "description" in changes:
            scenario.description = data.description
        if "adjustments" in changes and data.adjustments is not None:
            scenario.adjustments = [a.model_dump(mode="json") for a in data.adjustments]
        if "forecast_months" in changes and data.forecast_months is not None:
            scenario.forecast_months = data.forecast_months
        if "provider_id" in changes:
            scenario.provider_filter = _canonical_provider(data.provider_id)
        if "account_id" in changes:
            scenario.account_filter = data.account_id

        logger.info("scenario_updated", user_id=str(user_id), scenario_id=str(scenario_id), fields=sorted(changes))
        return await self._compute_and_stamp(user_id, scenario)

    async def compute(self, user_id: uuid.UUID, scenario_id: uuid.UUID) -> ScenarioComputation:
        scenario = await self.get(user_id, scenario_id)
        return await self._compute_and_stamp(user_id, scenario)

    async def preview(self, user_id: uuid.UUID, data: ScenarioPreview) -> ScenarioComputation:
        """Evaluate an unsaved scenario against the current baseline."""
        return await self._evaluate(
            user_id,
            data.name,
            data.adjustments,
            data.forecast_months,
            _canonical_provider(data.provider_id),
            data.account_id,
        )

    async def delete(self, user_id: uuid.UUID, scenario_id: uuid.UUID) -> None:
        scenario = await self.get(user_id, scenario_id)
        await self.db.delete(scenario)
        await self.db.commit()
        logger.info("scenario_deleted", user_id=str(user_id), scenario_id=str(scenario_id))
