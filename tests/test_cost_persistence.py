from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from spendsync.models.costs import ALL_SERVICES, CostSnapshot, DailyCostPoint
from spendsync.models.provider_account import AccountStatus, ProviderAccount
from spendsync.schemas.costs import DailyCost, ServiceCost, SnapshotValues, UsageMetric
from spendsync.services.costs.persistence import CostPersistenceService


def _values(current: str) -> SnapshotValues:
    return SnapshotValues(
        month=3,
        year=2026,
        current_month_cost=Decimal(current),
        last_month_cost=Decimal("90.00"),
        forecast_cost=Decimal("150.00"),
        forecast_confidence="medium",
        services=[ServiceCost(name="Amazon EC2", cost=Decimal(current))],
    )


def _daily(ec2: str):
    return [
        DailyCost(date=date(2026, 3, 1), cost=Decimal(ec2), service="Amazon EC2"),
        DailyCost(date=date(2026, 3, 1), cost=Decimal(ec2)),
        DailyCost(date=date(2026, 3, 2), cost=Decimal("1.00"), service="Amazon S3"),
        DailyCost(date=date(2026, 3, 2), cost=Decimal("1.00")),
    ]


@pytest.mark.asyncio
async def test_repeated_sync_overwrites_instead_of_appending(db, make_user, make_account):
    user = await make_user()
    account = await make_account(user)
    service = CostPersistenceService(db)

    await service.save_sync_result(account.id, _values("50.00"), _daily("49.00"))
    await service.save_sync_result(account.id, _values("75.00"), _daily("74.00"))

    snapshots = (await db.execute(
        select(CostSnapshot).where(CostSnapshot.account_id == account.id)
    )).scalars().all()
    assert len(snapshots) == 1
    await db.refresh(snapshots[0])
    assert Decimal(str(snapshots[0].current_month_cost)) == Decimal("75.00")
    assert snapshots[0].services[0]["name"] == "Amazon EC2"

    count = (await db.execute(
        select(func.count()).select_from(DailyCostPoint).where(DailyCostPoint.account_id == account.id)
    )).scalar()
    assert count == 4

    totals = await service.get_daily_totals([account.id], date(2026, 3, 1), date(2026, 3, 31))
    assert totals == [(date(2026, 3, 1), Decimal("74")), (date(2026, 3, 2), Decimal("1"))]


@pytest.mark.asyncio
async def test_usage_metrics_are_stored_with_snapshot(db, make_user, make_account):
    user = await make_user()
    account = await make_account(user)
    values = _values("50.00")
    values.usage_metrics = [UsageMetric(service="Amazon EC2", metric="UsageQuantity", quantity=Decimal("48"), unit="Hrs")]

    await CostPersistenceService(db).save_sync_result(account.id, values, _daily("49.00"))

    snapshot = (await db.execute(
        select(CostSnapshot).where(CostSnapshot.account_id == account.id)
    )).scalar_one()
    assert snapshot.usage_metrics == [
        {"service": "Amazon EC2", "metric": "UsageQuantity", "quantity": "48", "unit": "Hrs"}
    ]


@pytest.mark.asyncio
async def test_service_history_excludes_total_rows(db, make_user, make_account):
    user = await make_user()
    account = await make_account(user)
    service = CostPersistenceService(db)
    await service.save_sync_result(account.id, _values("50.00"), _daily("49.00"))

    history = await service.get_service_history([account.id], date(2026, 3, 1), date(2026, 3, 31))

    assert set(history) == {"Amazon EC2", "Amazon S3"}
    assert ALL_SERVICES not in history
    assert history["Amazon S3"] == {date(2026, 3, 2): Decimal("1")}


@pytest.mark.asyncio
async def test_daily_totals_sum_across_accounts(db, make_user, make_account):
    user = await make_user()
    first = await make_account(user)
    second = await make_account(user)
    service = CostPersistenceService(db)
    await service.save_sync_result(first.id, _values("50.00"), _daily("10.00"))
    await service.save_sync_result(second.id, _values("50.00"), _daily("5.00"))

    totals = dict(await service.get_daily_totals([first.id, second.id], date(2026, 3, 1), date(2026, 3, 1)))

    assert totals[date(2026, 3, 1)] == Decimal("15")


@pytest.mark.asyncio
async def test_mark_sync_success_and_failure(db, make_user, make_account):
    user = await make_user()
    account = await make_account(user)
    service = CostPersistenceService(db)

    await service.mark_sync_failure(account.id, "AWS rejected the role assumption (AccessDenied).")
    await db.refresh(account)
    assert account.status == AccountStatus.ERROR
    assert "AccessDenied" in account.error_message

    await service.mark_sync_success(account.id)
    refreshed = await db.get(ProviderAccount, account.id, populate_existing=True)
    assert refreshed.status == AccountStatus.HEALTHY
    assert refreshed.error_message is None
    assert refreshed.last_sync_at is not None
