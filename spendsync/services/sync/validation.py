"""
Structural checks for normalized drafts.

validate() reports every problem as a ValidationError; sanitize() repairs what
it can. The orchestrator logs the former and always continues with the latter.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from spendsync.core.exceptions import ValidationError
from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, ServiceCost

ZERO = Decimal("0")


def _is_bad_amount(value: Decimal) -> bool:
    return value.is_nan() or value.is_infinite() or value < 0


def _clean(value: Optional[Decimal]) -> Decimal:
    if value is None or value.is_nan() or value.is_infinite():
        return ZERO
    return max(value, ZERO)


class DraftValidator:

    @staticmethod
    def validate(draft: CostSnapshotDraft) -> None:
        issues: List[str] = []

        if draft.end_date < draft.start_date:
            issues.append(f"end_date {draft.end_date} precedes start_date {draft.start_date}")

        for label, amount in (
            ("current_period_total", draft.current_period_total),
            ("prior_period_total", draft.prior_period_total),
            ("credits", draft.credits),
            ("savings", draft.savings),
            ("tax", draft.tax),
        ):
            if amount is not None and _is_bad_amount(amount):
                issues.append(f"{label} is not a non-negative number: {amount}")

        seen = set()
        for p in draft.daily:
            if not (draft.start_date <= p.date <= draft.end_date):
                issues.append(f"daily point {p.date} outside {draft.start_date}..{draft.end_date}")
            if _is_bad_amount(p.cost):
                issues.append(f"daily point {p.date}/{p.service or 'total'} has invalid cost {p.cost}")
            key = (p.date, p.service)
            if key in seen:
                issues.append(f"duplicate daily point {p.date}/{p.service or 'total'}")
            seen.add(key)

        for s in draft.services:
            if not s.name:
                issues.append("service entry without a name")
            if _is_bad_amount(s.cost):
                issues.append(f"service {s.name} has invalid cost {s.cost}")

        if issues:
            raise ValidationError(f"{len(issues)} issue(s) in {draft.provider_id} cost payload", issues=issues)

    @staticmethod
    def sanitize(draft: CostSnapshotDraft) -> CostSnapshotDraft:
        """Return a repaired copy: amounts clamped to >= 0, bad points dropped, duplicates merged."""
        start, end = draft.start_date, draft.end_date
        if end < start:
            start, end = end, start

        merged: Dict[Tuple[date, Optional[str]], DailyCost] = {}
        for p in draft.daily:
            if not (start <= p.date <= end):
                continue
            cost = _clean(p.cost)
            key = (p.date, p.service)
            if key in merged:
                prev = merged[key]
                merged[key] = prev.model_copy(update={"cost": prev.cost + cost, "estimated": prev.estimated or p.estimated})
            else:
                merged[key] = p.model_copy(update={"cost": cost})

        services = [
            ServiceCost(name=s.name or "Other", cost=_clean(s.cost), change_percent=s.change_percent)
            for s in draft.services
        ]

        return draft.model_copy(update={
            "start_date": start,
            "end_date": end,
            "current_period_total": _clean(draft.current_period_total),
            "prior_period_total": None if draft.prior_period_total is None else _clean(draft.prior_period_total),
            "credits": _clean(draft.credits),
            "savings": _clean(draft.savings),
            "tax": _clean(draft.tax),
            "daily": sorted(merged.values(), key=lambda p: (p.date, p.service or "")),
            "services": services,
        })


def with_daily_totals(points: List[DailyCost]) -> List[DailyCost]:
    """
    Ensure each date has an account-wide total (service=None). Dates that only
    carry per-service points get a total row equal to their sum.
    """
    has_total = {p.date for p in points if p.service is None}
    sums: Dict[date, Decimal] = defaultdict(Decimal)
    estimated: Dict[date, bool] = defaultdict(bool)
    for p in points:
        if p.service is not None and p.date not in has_total:
            sums[p.date] += p.cost
            estimated[p.date] = estimated[p.date] or p.estimated

    totals = [DailyCost(date=d, cost=c, estimated=estimated[d]) for d, c in sums.items()]
    return sorted(points + totals, key=lambda p: (p.date, p.service or ""))
