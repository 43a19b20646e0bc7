"""
Forecast Engine

Deterministic multi-month cost projection over persisted daily totals, plus the
pure scenario function that adjusts a base forecast.

Method: daily totals are bucketed by calendar month (partial months are scaled
to their full length) and projected with Holt's linear exponential smoothing.
The confidence band widens with the square root of the horizon.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spendsync.core.config import get_settings
from spendsync.models.provider_account import ProviderAccount
from spendsync.schemas.forecasts import AdjustmentKind, BaseForecast, ForecastMonth, ScenarioAdjustment
from spendsync.services.adapters.registry import get_adapter_registry
from spendsync.services.costs.persistence import CostPersistenceService

logger = structlog.get_logger()

CENT = Decimal("0.01")
ALPHA = 0.4
BETA = 0.3
Z_95 = 1.96
FLAT_BAND = 0.15
SHARE_WINDOW_DAYS = 90


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _month_after(d: date) -> date:
    return (d.replace(day=1) + timedelta(days=32)).replace(day=1)


def _month_labels(as_of: date, months: int) -> List[str]:
    labels = []
    current = as_of
    for _ in range(months):
        current = _month_after(current)
        labels.append(current.strftime("%Y-%m"))
    return labels


def _monthly_buckets(daily: Sequence[Tuple[date, Decimal]]) -> pd.Series:
    df = pd.DataFrame({"ds": [d for d, _ in daily], "y": [float(c) for _, c in daily]})
    df["ds"] = pd.to_datetime(df["ds"])
    monthly = df.set_index("ds")["y"].resample("MS").mean().dropna()
    return monthly * monthly.index.days_in_month.to_numpy()


def _holt(values: np.ndarray) -> Tuple[float, float]:
    level = values[0]
    trend = (values[-1] - values[0]) / (len(values) - 1)
    for y in values[1:]:
        prev_level = level
        level = ALPHA * y + (1 - ALPHA) * (level + trend)
        trend = BETA * (level - prev_level) + (1 - BETA) * trend
    return level, trend


def _confidence(buckets: int, cv: float) -> str:
    if buckets >= 6 and cv < 0.15:
        return "high"
    if buckets >= 3 and cv < 0.35:
        return "medium"
    return "low"


def calculate_multi_month_forecast(
    daily: Sequence[Tuple[date, Decimal]],
    months: int,
    as_of: date,
    min_points: int = 14,
) -> BaseForecast:
    """
    Project `months` calendar months after `as_of` from (date, cost) daily totals.
    Returns an empty forecast when fewer than `min_points` days are available.
    """
    if len(daily) < min_points:
        logger.info("forecast_insufficient_data", data_points=len(daily), required=min_points)
        return BaseForecast(data_points=len(daily))

    labels = _month_labels(as_of, months)
    monthly = _monthly_buckets(daily)

    if len(monthly) < 2:
        avg_daily = float(np.mean([float(c) for _, c in daily]))
        value = avg_daily * 30
        return BaseForecast(
            months=[
                ForecastMonth(
                    month=label,
                    forecast=_money(round(value, 2)),
                    confidence_low=_money(round(value * (1 - FLAT_BAND), 2)),
                    confidence_high=_money(round(value * (1 + FLAT_BAND), 2)),
                )
                for label in labels
            ],
            confidence="low",
            data_points=len(daily),
            method="daily_average",
        )

    y = monthly.to_numpy(dtype=float)
    level, trend = _holt(y)

    x = np.arange(len(y))
    slope, intercept = np.polyfit(x, y, 1)
    residual_std = float(np.std(y - (slope * x + intercept)))
    mean = float(np.mean(y))
    cv = residual_std / mean if mean > 0 else float("inf")

    results = []
    for i, label in enumerate(labels, start=1):
        point = max(0.0, level + trend * i)
        margin = Z_95 * residual_std * np.sqrt(i)
        results.append(ForecastMonth(
            month=label,
            forecast=_money(round(point, 2)),
            confidence_low=_money(round(max(0.0, point - margin), 2)),
            confidence_high=_money(round(point + margin, 2)),
        ))

    return BaseForecast(
        months=results,
        confidence=_confidence(len(y), cv),
        data_points=len(daily),
        method="holt_linear",
    )


def _selected(adjustment: ScenarioAdjustment, index: int) -> bool:
    return not adjustment.months or index in adjustment.months


def apply_scenario(
    base: Sequence[ForecastMonth],
    adjustments: Sequence[ScenarioAdjustment],
    service_shares: Optional[Dict[str, float]] = None,
) -> List[ForecastMonth]:
    """
    Pure function: apply adjustments in order to each month of `base`.
    The same inputs always produce the same output; no adjustments is the identity.
    """
    if not adjustments:
        return [m.model_copy() for m in base]

    shares = service_shares or {}
    out = []
    for index, month in enumerate(base, start=1):
        value = month.forecast
        for adj in adjustments:
            if not _selected(adj, index):
                continue
            if adj.kind == AdjustmentKind.PERCENT:
                value = value * (1 + adj.value / 100)
            elif adj.kind == AdjustmentKind.FIXED:
                value = value + adj.value
            elif adj.kind == AdjustmentKind.GROWTH:
                value = value * (1 + adj.value / 100) ** index
            elif adj.kind == AdjustmentKind.REMOVE:
                if adj.service:
                    share = Decimal(str(shares.get(adj.service, 0.0)))
                    value = value - value * share
                else:
                    value = value - adj.value
        value = max(Decimal("0"), value).quantize(CENT, rounding=ROUND_HALF_UP)

        if month.forecast > 0:
            ratio = value / month.forecast
            low = (month.confidence_low * ratio).quantize(CENT, rounding=ROUND_HALF_UP)
            high = (month.confidence_high * ratio).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            low = high = value
        out.append(ForecastMonth(month=month.month, forecast=value, confidence_low=low, confidence_high=high))
    return out


def _describe_adjustment(adj: ScenarioAdjustment) -> str:
    scope = "all months" if not adj.months else "month " + ", ".join(str(m) for m in adj.months)
    if adj.label:
        return f"{adj.label} ({scope})"
    if adj.kind == AdjustmentKind.PERCENT:
        return f"{adj.value:+}% ({scope})"
    if adj.kind == AdjustmentKind.FIXED:
        sign = "+" if adj.value >= 0 else "-"
        return f"{sign}${abs(adj.value):,.2f} per month ({scope})"
    if adj.kind == AdjustmentKind.GROWTH:
        return f"{adj.value}% compounding monthly growth ({scope})"
    if adj.service:
        return f"removal of {adj.service} ({scope})"
    return f"removal of ${adj.value:,.2f} per month ({scope})"


def build_narrative(
    name: str,
    base: Sequence[ForecastMonth],
    scenario: Sequence[ForecastMonth],
    adjustments: Sequence[ScenarioAdjustment],
) -> str:
    """Deterministic plain-text summary of the adjustments and their net effect."""
    base_total = sum((m.forecast for m in base), Decimal("0"))
    scenario_total = sum((m.forecast for m in scenario), Decimal("0"))
    horizon = len(base)

    if not base:
        return f'Not enough cost history to evaluate the "{name}" scenario yet.'
    if not adjustments:
        return (
            f'The "{name}" scenario has no adjustments; projected {horizon}-month spend '
            f"matches the base forecast of ${base_total:,.2f}."
        )

    delta = scenario_total - base_total
    direction = "an increase" if delta >= 0 else "a decrease"
    if base_total > 0:
        pct = f" ({abs(delta) / base_total * 100:.1f}%)"
    else:
        pct = ""
    applied = "; ".join(_describe_adjustment(a) for a in adjustments)
    return (
        f'Under the "{name}" scenario, projected {horizon}-month spend is ${scenario_total:,.2f}, '
        f"{direction} of ${abs(delta):,.2f}{pct} compared to the base forecast of ${base_total:,.2f}. "
        f"Applied adjustments: {applied}."
    )


class ForecastService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.persistence = CostPersistenceService(db)

    async def _account_ids(self, user_id: uuid.UUID, provider_id: Optional[str], account_id: Optional[uuid.UUID]) -> List[uuid.UUID]:
        query = select(ProviderAccount.id).where(
            ProviderAccount.user_id == user_id,
            ProviderAccount.is_active.is_(True),
        )
        if provider_id:
            query = query.where(ProviderAccount.provider == get_adapter_registry().resolve_tag(provider_id))
        if account_id:
            query = query.where(ProviderAccount.id == account_id)
        return list((await self.db.execute(query)).scalars().all())

    async def service_shares(self, account_ids: Sequence[uuid.UUID], as_of: date) -> Dict[str, float]:
        start = as_of - timedelta(days=SHARE_WINDOW_DAYS - 1)
        history = await self.persistence.get_service_history(account_ids, start, as_of)
        totals = {svc: sum(points.values(), Decimal("0")) for svc, points in history.items()}
        grand = sum(totals.values(), Decimal("0"))
        if grand <= 0:
            return {}
        return {svc: round(float(total / grand), 6) for svc, total in sorted(totals.items())}

    async def get_forecast(
        self,
        user_id: uuid.UUID,
        months: Optional[int] = None,
        provider_id: Optional[str] = None,
        account_id: Optional[uuid.UUID] = None,
        as_of: Optional[date] = None,
    ) -> BaseForecast:
        months = min(months or self.settings.FORECAST_DEFAULT_MONTHS, self.settings.FORECAST_MAX_MONTHS)
        as_of = as_of or datetime.now(timezone.utc).date()
        account_ids = await self._account_ids(user_id, provider_id, account_id)
        if not account_ids:
            return BaseForecast()

        start = as_of - timedelta(days=self.settings.FORECAST_HISTORY_DAYS)
        daily = await self.persistence.get_daily_totals(account_ids, start, as_of)
        forecast = calculate_multi_month_forecast(
            daily, months, as_of, min_points=self.settings.FORECAST_MIN_DATA_POINTS
        )
        forecast.service_shares = await self.service_shares(account_ids, as_of)

        logger.info(
            "forecast_generated",
            user_id=str(user_id),
            months=months,
            data_points=forecast.data_points,
            method=forecast.method,
            confidence=forecast.confidence,
        )
        return forecast
