from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from spendsync.core.exceptions import ConfigurationError
from spendsync.schemas.costs import CostSnapshotDraft, DailyCost

if TYPE_CHECKING:
    from spendsync.services.credentials.resolver import LiveCredentials

CENT = Decimal("0.01")


def spread_evenly(amount: Decimal, start: date, end: date, estimated: bool = True) -> List[DailyCost]:
    """
    Spread `amount` uniformly over start..end inclusive, rounded to cents.
    The last day absorbs the rounding remainder so the points sum to `amount`.
    """
    if end < start or amount <= 0:
        return []
    days = (end - start).days + 1
    per_day = (amount / days).quantize(CENT, rounding=ROUND_HALF_UP)
    points = [
        DailyCost(date=start + timedelta(days=i), cost=per_day, estimated=estimated)
        for i in range(days - 1)
    ]
    remainder = (amount - per_day * (days - 1)).quantize(CENT, rounding=ROUND_HALF_UP)
    points.append(DailyCost(date=end, cost=max(remainder, Decimal("0")), estimated=estimated))
    return points


class BaseAdapter(ABC):
    """
    Abstract Base Class for billing-source adapters.

    An adapter is stateless: it translates one provider's billing API into a
    CostSnapshotDraft and can produce daily points for the requested range.
    New providers implement this contract and register a tag; the sync
    orchestrator never branches on provider.
    """

    provider_id: str = ""
    display_name: str = ""
    aliases: Tuple[str, ...] = ()
    # Fields a manual credential object must contain
    required_fields: Tuple[str, ...] = ()
    # True when the billing API reports costs per day
    native_daily: bool = True
    supports_role_exchange: bool = False

    def missing_fields(self, values: Dict[str, Any]) -> List[str]:
        return [f for f in self.required_fields if not str(values.get(f) or "").strip()]

    @abstractmethod
    async def fetch_cost_data(
        self,
        credentials: "LiveCredentials",
        start_date: date,
        end_date: date,
    ) -> CostSnapshotDraft:
        """Call the provider's billing API and return a normalized draft (end_date inclusive)."""
        pass

    def synthesize_daily_data(
        self,
        draft: CostSnapshotDraft,
        start_date: date,
        end_date: date,
        today: Optional[date] = None,
    ) -> List[DailyCost]:
        """
        Daily points for the range. Native-daily providers return what they reported.

        Invoice providers spread period totals across the days they cover. This is
        an approximation: it assumes uniform spend within each period and is only
        as precise as the sub-period hints the provider exposes.
        """
        if draft.daily or self.native_daily:
            return list(draft.daily)

        today = today or date.today()
        last_day = min(end_date, today)

        if draft.period_hints:
            points: Dict[date, Decimal] = {}
            for hint in draft.period_hints:
                lo, hi = max(hint.start, start_date), min(hint.end, last_day)
                if hi < lo or hint.amount <= 0:
                    continue
                # Only the share of the hint that falls inside the range
                covered = Decimal((hi - lo).days + 1)
                span = Decimal((hint.end - hint.start).days + 1)
                share = (hint.amount * covered / span).quantize(CENT, rounding=ROUND_HALF_UP)
                for p in spread_evenly(share, lo, hi):
                    points[p.date] = points.get(p.date, Decimal("0")) + p.cost
            return [DailyCost(date=d, cost=c, estimated=True) for d, c in sorted(points.items())]

        if draft.current_period_total <= 0:
            return []
        # Invoice totals are month-to-date figures
        first = max(start_date, last_day.replace(day=1))
        return spread_evenly(draft.current_period_total, first, last_day)

    async def exchange_role_credentials(
        self,
        role_arn: str,
        external_id: str,
        session_name: str,
        duration_seconds: int,
    ) -> "LiveCredentials":
        raise ConfigurationError(
            f"Automated connections are not supported for provider '{self.provider_id}'.",
            hint="Reconnect this account with manual API credentials.",
        )


def sum_costs(points: Iterable[DailyCost]) -> Decimal:
    return sum((p.cost for p in points), Decimal("0"))
