from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from spendsync.core.exceptions import ConfigurationError
from spendsync.models.anomaly_baseline import AnomalyBaseline
from spendsync.models.costs import ALL_SERVICES
from spendsync.services.analysis.anomaly import (
    AnomalyBaselineEngine,
    classify_severity,
    compute_baseline,
    describe_anomaly,
)

AS_OF = date(2026, 3, 31)


def test_compute_baseline_increase():
    stat = compute_baseline([Decimal("100")] * 30, Decimal("150"), min_points=7)
    assert stat.variance_percent == 50.0
    assert stat.is_increase is True
    assert stat.baseline_cost == Decimal("100.0000")
    assert stat.data_points == 30


def test_compute_baseline_decrease():
    stat = compute_baseline([Decimal("100")] * 10, Decimal("60"), min_points=7)
    assert stat.variance_percent == -40.0
    assert stat.is_increase is False


def test_compute_baseline_absent_without_enough_history():
    assert compute_baseline([Decimal("100")] * 6, Decimal("150"), min_points=7) is None


def test_compute_baseline_absent_for_zero_mean():
    assert compute_baseline([Decimal("0")] * 10, Decimal("5"), min_points=7) is None


@pytest.mark.parametrize("variance,cost,expected", [
    (30.0, Decimal("10"), "medium"),
    (60.0, Decimal("10"), "high"),
    (150.0, Decimal("10"), "critical"),
    (21.0, Decimal("1500"), "critical"),
    (-22.0, Decimal("10"), "low"),
])
def test_classify_severity(variance, cost, expected):
    assert classify_severity(variance, cost) == expected


def test_describe_anomaly_labels_total_row():
    assert describe_anomaly(ALL_SERVICES, 50.0, True) == "Total spend costs are 50.0% higher than their 30-day baseline"
    assert describe_anomaly("Amazon S3", -40.0, False).startswith("Amazon S3 costs are 40.0% lower")


@pytest.fixture
def spiking_account(make_user, make_account, add_daily_points, series):
    async def _setup(plan: str = "pro", email_anomaly_alerts: bool = True):
        user = await make_user(plan=plan, email_anomaly_alerts=email_anomaly_alerts)
        account = await make_account(user, alias="prod")
        await add_daily_points(account.id, series(AS_OF, [100] * 30 + [150]))
        await add_daily_points(account.id, series(AS_OF, [10] * 30 + [40]), service="Amazon EC2")
        return user, account
    return _setup


@pytest.mark.asyncio
async def test_recompute_writes_baselines_for_recent_days(session_maker, spiking_account):
    user, account = await spiking_account()
    engine = AnomalyBaselineEngine(session_maker)

    summary = await engine.recompute_recent(account.id, as_of=AS_OF)

    # 7 recent days for the total row and for EC2
    assert summary.processed == 14
    assert summary.written == 14
    assert summary.errors == 0

    async with session_maker() as db:
        row = (await db.execute(
            select(AnomalyBaseline).where(
                AnomalyBaseline.account_id == account.id,
                AnomalyBaseline.service_name == ALL_SERVICES,
                AnomalyBaseline.baseline_date == AS_OF,
            )
        )).scalar_one()
    assert row.variance_percent == 50.0
    assert row.is_increase is True
    assert row.data_points == 30


@pytest.mark.asyncio
async def test_recompute_is_idempotent(session_maker, spiking_account):
    user, account = await spiking_account()
    engine = AnomalyBaselineEngine(session_maker)

    await engine.recompute_recent(account.id, as_of=AS_OF)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    async with session_maker() as db:
        rows = (await db.execute(
            select(AnomalyBaseline).where(AnomalyBaseline.account_id == account.id)
        )).scalars().all()
    assert len(rows) == 14


@pytest.mark.asyncio
async def test_short_history_produces_no_baseline(session_maker, make_user, make_account, add_daily_points, series):
    user = await make_user()
    account = await make_account(user)
    await add_daily_points(account.id, series(AS_OF, [100, 100, 100, 100, 100, 300]))

    summary = await AnomalyBaselineEngine(session_maker).recompute_recent(account.id, as_of=AS_OF)

    assert summary.written == 0
    assert summary.skipped == 6
    assert await AnomalyBaselineEngine(session_maker).get_anomalies(user.id, threshold_percent=0, as_of=AS_OF) == []


@pytest.mark.asyncio
async def test_get_anomalies_filters_and_orders_by_magnitude(session_maker, spiking_account):
    user, account = await spiking_account()
    engine = AnomalyBaselineEngine(session_maker)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    anomalies = await engine.get_anomalies(user.id, threshold_percent=20, as_of=AS_OF)

    assert [(a.service_name, a.variance_percent) for a in anomalies] == [
        ("Amazon EC2", 300.0),
        (ALL_SERVICES, 50.0),
    ]
    top = anomalies[0]
    assert top.provider_id == "aws"
    assert top.account_alias == "prod"
    assert top.severity == "critical"
    assert top.baseline_cost == Decimal("10.00")
    assert top.current_cost == Decimal("40.00")

    only_total = await engine.get_anomalies(user.id, threshold_percent=20, service=ALL_SERVICES, as_of=AS_OF)
    assert [a.service_name for a in only_total] == [ALL_SERVICES]
    assert only_total[0].message.startswith("Total spend")

    assert await engine.get_anomalies(user.id, threshold_percent=500, as_of=AS_OF) == []
    assert await engine.get_anomalies(user.id, provider_id="azure", as_of=AS_OF) == []
    aliased = await engine.get_anomalies(user.id, threshold_percent=20, provider_id="Amazon", as_of=AS_OF)
    assert [a.service_name for a in aliased] == ["Amazon EC2", ALL_SERVICES]
    with pytest.raises(ConfigurationError):
        await engine.get_anomalies(user.id, provider_id="oracle", as_of=AS_OF)


@pytest.mark.asyncio
async def test_get_anomalies_is_scoped_to_owner(session_maker, make_user, spiking_account):
    user, account = await spiking_account()
    stranger = await make_user()
    engine = AnomalyBaselineEngine(session_maker)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    assert await engine.get_anomalies(stranger.id, threshold_percent=0, as_of=AS_OF) == []


@pytest.mark.asyncio
async def test_escalation_notifies_and_emails_pro_users(session_maker, spiking_account):
    user, account = await spiking_account(plan="pro")
    notifier = AsyncMock()
    email = AsyncMock()
    engine = AnomalyBaselineEngine(session_maker, notifier=notifier, email_service=email)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    escalated = await engine.escalate_significant(user.id, account.id, as_of=AS_OF)

    assert escalated.service_name == "Amazon EC2"
    notifier.notify.assert_awaited_once()
    payload = notifier.notify.await_args.args[1]
    assert payload.type == "anomaly_detected"
    assert payload.metadata["severity"] == "critical"
    email.send_anomaly_alert.assert_awaited_once()
    assert email.send_anomaly_alert.await_args.args[0] == user.email


@pytest.mark.asyncio
@pytest.mark.parametrize("plan,opted_in", [("free", True), ("starter", True), ("pro", False)])
async def test_escalation_skips_email_when_not_eligible(session_maker, spiking_account, plan, opted_in):
    user, account = await spiking_account(plan=plan, email_anomaly_alerts=opted_in)
    notifier = AsyncMock()
    email = AsyncMock()
    engine = AnomalyBaselineEngine(session_maker, notifier=notifier, email_service=email)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    await engine.escalate_significant(user.id, account.id, as_of=AS_OF)

    notifier.notify.assert_awaited_once()
    email.send_anomaly_alert.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_escalation_below_threshold(session_maker, make_user, make_account, add_daily_points, series):
    user = await make_user(plan="pro")
    account = await make_account(user)
    await add_daily_points(account.id, series(AS_OF, [100] * 30 + [120]))
    notifier = AsyncMock()
    engine = AnomalyBaselineEngine(session_maker, notifier=notifier)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    assert await engine.escalate_significant(user.id, account.id, as_of=AS_OF) is None
    notifier.notify.assert_not_awaited()


@pytest.mark.asyncio
async def test_escalation_happens_once_across_repeated_syncs(session_maker, make_user, make_account, add_daily_points, series):
    user = await make_user(plan="pro")
    account = await make_account(user)
    await add_daily_points(account.id, series(AS_OF, [10] * 30 + [40]), service="Amazon EC2")
    notifier = AsyncMock()
    email = AsyncMock()
    engine = AnomalyBaselineEngine(session_maker, notifier=notifier, email_service=email)

    results = []
    for _ in range(3):
        await engine.recompute_recent(account.id, as_of=AS_OF)
        results.append(await engine.escalate_significant(user.id, account.id, as_of=AS_OF))

    assert results[0].service_name == "Amazon EC2"
    assert results[1:] == [None, None]
    notifier.notify.assert_awaited_once()
    email.send_anomaly_alert.assert_awaited_once()

    async with session_maker() as db:
        row = (await db.execute(
            select(AnomalyBaseline).where(
                AnomalyBaseline.service_name == "Amazon EC2",
                AnomalyBaseline.baseline_date == AS_OF,
            )
        )).scalar_one()
    assert row.escalated_at is not None
    # Still listed for the dashboard
    assert len(await engine.get_anomalies(user.id, threshold_percent=50, as_of=AS_OF)) == 1


@pytest.mark.asyncio
async def test_escalation_moves_on_to_next_unescalated_anomaly(session_maker, spiking_account):
    user, account = await spiking_account(plan="pro")
    notifier = AsyncMock()
    engine = AnomalyBaselineEngine(session_maker, notifier=notifier)
    await engine.recompute_recent(account.id, as_of=AS_OF)

    first = await engine.escalate_significant(user.id, account.id, as_of=AS_OF)
    second = await engine.escalate_significant(user.id, account.id, as_of=AS_OF)
    third = await engine.escalate_significant(user.id, account.id, as_of=AS_OF)

    assert (first.service_name, second.service_name, third) == ("Amazon EC2", ALL_SERVICES, None)
    assert notifier.notify.await_count == 2
