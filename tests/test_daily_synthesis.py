from datetime import date
from decimal import Decimal

from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, PeriodHint
from spendsync.services.adapters.aws import AWSAdapter
from spendsync.services.adapters.base import spread_evenly, sum_costs
from spendsync.services.adapters.digitalocean import DigitalOceanAdapter


def _draft(**kwargs) -> CostSnapshotDraft:
    defaults = dict(provider_id="digitalocean", start_date=date(2026, 3, 1), end_date=date(2026, 3, 10))
    defaults.update(kwargs)
    return CostSnapshotDraft(**defaults)


def test_spread_evenly_sums_to_total():
    points = spread_evenly(Decimal("100.00"), date(2026, 3, 1), date(2026, 3, 3))
    assert [p.cost for p in points] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum_costs(points) == Decimal("100.00")
    assert all(p.estimated for p in points)


def test_spread_evenly_empty_for_zero_or_inverted_range():
    assert spread_evenly(Decimal("0"), date(2026, 3, 1), date(2026, 3, 3)) == []
    assert spread_evenly(Decimal("10"), date(2026, 3, 3), date(2026, 3, 1)) == []


def test_invoice_total_spread_over_month_to_date():
    adapter = DigitalOceanAdapter()
    draft = _draft(current_period_total=Decimal("50.00"))

    points = adapter.synthesize_daily_data(draft, draft.start_date, draft.end_date, today=date(2026, 3, 5))

    assert [p.date for p in points] == [date(2026, 3, d) for d in range(1, 6)]
    assert sum_costs(points) == Decimal("50.00")
    assert all(p.estimated and p.service is None for p in points)


def test_period_hints_are_spread_proportionally():
    adapter = DigitalOceanAdapter()
    draft = _draft(
        current_period_total=Decimal("40.00"),
        period_hints=[
            PeriodHint(start=date(2026, 3, 1), end=date(2026, 3, 2), amount=Decimal("30.00")),
            PeriodHint(start=date(2026, 3, 3), end=date(2026, 3, 4), amount=Decimal("10.00")),
        ],
    )

    points = adapter.synthesize_daily_data(draft, date(2026, 3, 1), date(2026, 3, 4), today=date(2026, 3, 10))

    by_day = {p.date: p.cost for p in points}
    assert by_day[date(2026, 3, 1)] == Decimal("15.00")
    assert by_day[date(2026, 3, 4)] == Decimal("5.00")
    assert sum(by_day.values()) == Decimal("40.00")


def test_hint_partially_outside_range_contributes_its_share():
    adapter = DigitalOceanAdapter()
    draft = _draft(period_hints=[
        PeriodHint(start=date(2026, 2, 27), end=date(2026, 3, 2), amount=Decimal("40.00")),
    ])

    points = adapter.synthesize_daily_data(draft, date(2026, 3, 1), date(2026, 3, 10), today=date(2026, 3, 10))

    assert sum_costs(points) == Decimal("20.00")
    assert {p.date for p in points} == {date(2026, 3, 1), date(2026, 3, 2)}


def test_zero_total_produces_no_points():
    adapter = DigitalOceanAdapter()
    assert adapter.synthesize_daily_data(_draft(), date(2026, 3, 1), date(2026, 3, 10)) == []


def test_native_daily_provider_is_a_noop():
    adapter = AWSAdapter()
    daily = [DailyCost(date=date(2026, 3, 1), cost=Decimal("4.2"), service="Amazon EC2")]
    draft = _draft(provider_id="aws", daily=daily, current_period_total=Decimal("99"))

    assert adapter.synthesize_daily_data(draft, date(2026, 3, 1), date(2026, 3, 10)) == daily
