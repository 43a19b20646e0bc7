"""
Cost Persistence Service

Idempotent storage of normalized sync output: one CostSnapshot per
(account, month, year) and DailyCostPoints unique per (account, date, service).
Repeated syncs overwrite rather than append.
"""

import uuid
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spendsync.core.exceptions import PersistenceError
from spendsync.models.costs import ALL_SERVICES, CostSnapshot, DailyCostPoint
from spendsync.models.provider_account import AccountStatus, ProviderAccount
from spendsync.schemas.costs import DailyCost, SnapshotValues

logger = structlog.get_logger()

BATCH_SIZE = 500


def dialect_insert(db: AsyncSession, model):
    """ON CONFLICT-capable insert for the bound dialect (PostgreSQL in prod, SQLite in tests)."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


class CostPersistenceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_sync_result(
        self,
        account_id: uuid.UUID,
        values: SnapshotValues,
        daily: Sequence[DailyCost],
    ) -> dict:
        """
        Upsert the month's snapshot and the daily points in one transaction.
        Raises PersistenceError (after rollback) if any statement fails.
        """
        try:
            await self._upsert_snapshot(account_id, values)
            points_saved = await self._upsert_daily_points(account_id, daily)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("cost_persistence_failed", account_id=str(account_id), error=str(e))
            raise PersistenceError(
                "Failed to store synced cost data.",
                details={"account_id": str(account_id)},
            ) from e

        logger.info(
            "cost_persistence_success",
            account_id=str(account_id),
            month=values.month,
            year=values.year,
            daily_points=points_saved,
        )
        return {"daily_points": points_saved}

    async def _upsert_snapshot(self, account_id: uuid.UUID, values: SnapshotValues) -> None:
        now = datetime.now(timezone.utc)
        row = {
            "id": uuid.uuid4(),
            "account_id": account_id,
            "month": values.month,
            "year": values.year,
            "current_month_cost": values.current_month_cost,
            "last_month_cost": values.last_month_cost,
            "forecast_cost": values.forecast_cost,
            "forecast_confidence": values.forecast_confidence,
            "credits": values.credits,
            "savings": values.savings,
            "tax": values.tax,
            "currency": values.currency,
            "services": [s.model_dump(mode="json") for s in values.services],
            "usage_metrics": [m.model_dump(mode="json") for m in values.usage_metrics] or None,
            "created_at": now,
            "updated_at": now,
        }
        stmt = dialect_insert(self.db, CostSnapshot).values(row)
        updatable = {k: getattr(stmt.excluded, k) for k in row if k not in ("id", "account_id", "month", "year", "created_at")}
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "month", "year"],
            set_=updatable,
        )
        await self.db.execute(stmt)

    async def _upsert_daily_points(self, account_id: uuid.UUID, daily: Iterable[DailyCost]) -> int:
        now = datetime.now(timezone.utc)
        # Last write wins for duplicate (date, service) keys within one payload
        by_key: Dict[Tuple[date, str], dict] = {}
        for p in daily:
            service = p.service or ALL_SERVICES
            by_key[(p.date, service)] = {
                "id": uuid.uuid4(),
                "account_id": account_id,
                "usage_date": p.date,
                "service_name": service,
                "cost": p.cost,
                "is_estimated": p.estimated,
                "created_at": now,
                "updated_at": now,
            }

        values = list(by_key.values())
        for i in range(0, len(values), BATCH_SIZE):
            stmt = dialect_insert(self.db, DailyCostPoint).values(values[i:i + BATCH_SIZE])
            stmt = stmt.on_conflict_do_update(
                index_elements=["account_id", "usage_date", "service_name"],
                set_={
                    "cost": stmt.excluded.cost,
                    "is_estimated": stmt.excluded.is_estimated,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.db.execute(stmt)
        return len(values)

    async def get_snapshot(self, account_id: uuid.UUID, month: int, year: int) -> Optional[CostSnapshot]:
        result = await self.db.execute(
            select(CostSnapshot).where(
                CostSnapshot.account_id == account_id,
                CostSnapshot.month == month,
                CostSnapshot.year == year,
            )
        )
        return result.scalar_one_or_none()

    async def get_daily_totals(
        self,
        account_ids: Sequence[uuid.UUID],
        start_date: date,
        end_date: date,
        service: str = ALL_SERVICES,
    ) -> List[Tuple[date, Decimal]]:
        """Per-day cost summed across the given accounts, ordered by date."""
        if not account_ids:
            return []
        result = await self.db.execute(
            select(DailyCostPoint.usage_date, func.sum(DailyCostPoint.cost))
            .where(
                DailyCostPoint.account_id.in_(list(account_ids)),
                DailyCostPoint.service_name == service,
                DailyCostPoint.usage_date >= start_date,
                DailyCostPoint.usage_date <= end_date,
            )
            .group_by(DailyCostPoint.usage_date)
            .order_by(DailyCostPoint.usage_date)
        )
        return [(d, Decimal(str(c or 0))) for d, c in result.all()]

    async def get_service_history(
        self,
        account_ids: Sequence[uuid.UUID],
        start_date: date,
        end_date: date,
    ) -> Dict[str, Dict[date, Decimal]]:
        """service_name -> {date: cost} for per-service points (excludes the total row)."""
        history: Dict[str, Dict[date, Decimal]] = defaultdict(dict)
        if not account_ids:
            return history
        result = await self.db.execute(
            select(DailyCostPoint.service_name, DailyCostPoint.usage_date, func.sum(DailyCostPoint.cost))
            .where(
                DailyCostPoint.account_id.in_(list(account_ids)),
                DailyCostPoint.service_name != ALL_SERVICES,
                DailyCostPoint.usage_date >= start_date,
                DailyCostPoint.usage_date <= end_date,
            )
            .group_by(DailyCostPoint.service_name, DailyCostPoint.usage_date)
        )
        for service, day, cost in result.all():
            history[service][day] = Decimal(str(cost or 0))
        return history

    async def mark_sync_success(self, account_id: uuid.UUID, synced_at: Optional[datetime] = None) -> None:
        await self.db.execute(
            update(ProviderAccount)
            .where(ProviderAccount.id == account_id)
            .values(
                last_sync_at=synced_at or datetime.now(timezone.utc),
                status=AccountStatus.HEALTHY,
                error_message=None,
            )
        )
        await self.db.commit()

    async def mark_sync_failure(self, account_id: uuid.UUID, message: str) -> None:
        await self.db.execute(
            update(ProviderAccount)
            .where(ProviderAccount.id == account_id)
            .values(status=AccountStatus.ERROR, error_message=message[:1000])
        )
        await self.db.commit()
