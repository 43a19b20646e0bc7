import calendar
import uuid
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, ServiceCost, SnapshotValues
from spendsync.services.costs.persistence import CostPersistenceService

CENT = Decimal("0.01")
TREND_WINDOW_DAYS = 7
# Used only when neither stored history nor the provider supplies a figure
PRIOR_FALLBACK_RATIO = Decimal("0.95")
FORECAST_FALLBACK_RATIO = Decimal("1.1")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _previous_month(d: date) -> date:
    return (d.replace(day=1) - timedelta(days=1)).replace(day=1)


def forecast_confidence(observed_days: int, all_estimated: bool) -> str:
    if all_estimated or observed_days < 7:
        return "low"
    if observed_days >= 21:
        return "high"
    return "medium"


class SnapshotEnhancer:
    """
    Turns a sanitized draft into the values stored on the month's CostSnapshot,
    correcting the prior-period total and projecting month-end spend from the
    daily history accumulated so far.
    """

    def __init__(self, persistence: CostPersistenceService):
        self.persistence = persistence

    async def enhance(self, account_id: uuid.UUID, draft: CostSnapshotDraft, daily: List[DailyCost]) -> SnapshotValues:
        end = draft.end_date
        month_start = end.replace(day=1)
        totals: Dict[date, DailyCost] = {p.date: p for p in daily if p.service is None}
        month_points = [p for d, p in totals.items() if month_start <= d <= end]

        current = sum((p.cost for p in month_points), Decimal("0")) if month_points else draft.current_period_total

        prior = await self._prior_period_total(account_id, end, draft.prior_period_total, current)
        forecast, confidence = await self._forecast(account_id, end, current, totals, month_points)
        services = await self._with_change_percent(account_id, end, draft.services)

        return SnapshotValues(
            month=end.month,
            year=end.year,
            current_month_cost=_money(current),
            last_month_cost=_money(prior),
            forecast_cost=_money(forecast),
            forecast_confidence=confidence,
            credits=_money(draft.credits),
            savings=_money(draft.savings),
            tax=_money(draft.tax),
            currency=draft.currency,
            services=services,
            usage_metrics=draft.usage_metrics,
        )

    async def _prior_period_total(self, account_id, end: date, reported: Optional[Decimal], current: Decimal) -> Decimal:
        prior_start = _previous_month(end)
        prior_end = end.replace(day=1) - timedelta(days=1)
        stored = await self.persistence.get_daily_totals([account_id], prior_start, prior_end)
        # Stored history wins only when it covers every day of the prior month
        if len(stored) == (prior_end - prior_start).days + 1:
            return sum((c for _, c in stored), Decimal("0"))
        if reported is not None:
            return reported
        return current * PRIOR_FALLBACK_RATIO

    async def _forecast(self, account_id, end: date, current: Decimal, totals: Dict[date, DailyCost], month_points: List[DailyCost]):
        if not month_points:
            return current * FORECAST_FALLBACK_RATIO, "low"

        window_start = end - timedelta(days=TREND_WINDOW_DAYS - 1)
        window: Dict[date, Decimal] = {
            d: c for d, c in await self.persistence.get_daily_totals([account_id], window_start, end)
        }
        for d, p in totals.items():
            if window_start <= d <= end:
                window[d] = p.cost

        avg_daily = sum(window.values(), Decimal("0")) / len(window) if window else Decimal("0")
        days_in_month = calendar.monthrange(end.year, end.month)[1]
        remaining = days_in_month - end.day

        forecast = current + avg_daily * remaining
        confidence = forecast_confidence(len(month_points), all(p.estimated for p in month_points))
        return forecast, confidence

    async def _with_change_percent(self, account_id, end: date, services: List[ServiceCost]) -> List[ServiceCost]:
        prev = _previous_month(end)
        snapshot = await self.persistence.get_snapshot(account_id, prev.month, prev.year)
        previous: Dict[str, Decimal] = {}
        if snapshot and snapshot.services:
            previous = {s["name"]: Decimal(str(s.get("cost") or 0)) for s in snapshot.services}

        enriched = []
        for s in services:
            before = previous.get(s.name)
            change = None
            if before is not None and before > 0:
                change = round(float((s.cost - before) / before * 100), 2)
            enriched.append(ServiceCost(name=s.name, cost=_money(s.cost), change_percent=change))
        return enriched
