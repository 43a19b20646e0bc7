"""
Anomaly Baseline Engine

Maintains, per (account, service, date), the mean daily cost over the trailing
window and the variance of that day's cost against it. Recomputed for the most
recent days after every successful sync so late-arriving billing data is
absorbed.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendsync.core.config import get_settings
from spendsync.core.tier_guard import FeatureFlag, has_feature
from spendsync.models.anomaly_baseline import AnomalyBaseline
from spendsync.models.costs import ALL_SERVICES
from spendsync.models.provider_account import ProviderAccount
from spendsync.models.user import User
from spendsync.schemas.anomalies import AnomalyOut
from spendsync.services.adapters.registry import get_adapter_registry
from spendsync.services.costs.persistence import CostPersistenceService, dialect_insert
from spendsync.services.notifications.dispatcher import NotificationDispatcher, NotificationPayload
from spendsync.services.notifications.email_service import EmailService

logger = structlog.get_logger()

CENT = Decimal("0.01")
TOTAL_LABEL = "Total spend"


@dataclass(frozen=True)
class BaselineStat:
    baseline_cost: Decimal
    current_cost: Decimal
    variance_percent: float
    is_increase: bool
    data_points: int


@dataclass
class RecomputeSummary:
    processed: int = 0
    written: int = 0
    skipped: int = 0
    errors: int = 0


def compute_baseline(history: Sequence[Decimal], current: Decimal, min_points: int) -> Optional[BaselineStat]:
    """
    Mean of the trailing history and the variance of `current` against it.
    None (no baseline) when there are fewer than `min_points` values or the mean is 0.
    """
    if len(history) < min_points:
        return None
    baseline = sum(history, Decimal("0")) / len(history)
    if baseline <= 0:
        return None
    variance = float((current - baseline) / baseline * 100)
    return BaselineStat(
        baseline_cost=baseline.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
        current_cost=current,
        variance_percent=round(variance, 2),
        is_increase=current > baseline,
        data_points=len(history),
    )


def classify_severity(variance_percent: float, current_cost: Decimal) -> str:
    magnitude = abs(variance_percent)
    if magnitude > 100 or current_cost > 1000:
        return "critical"
    if magnitude > 50 or current_cost > 500:
        return "high"
    if magnitude > 25:
        return "medium"
    return "low"


def describe_anomaly(service_name: str, variance_percent: float, is_increase: bool) -> str:
    label = TOTAL_LABEL if service_name == ALL_SERVICES else service_name
    direction = "higher" if is_increase else "lower"
    return f"{label} costs are {abs(variance_percent):.1f}% {direction} than their 30-day baseline"


class AnomalyBaselineEngine:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        notifier: Optional[NotificationDispatcher] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.session_maker = session_maker
        self.notifier = notifier
        self.email_service = email_service
        self.settings = get_settings()

    async def recompute_recent(self, account_id: uuid.UUID, as_of: Optional[date] = None) -> RecomputeSummary:
        as_of = as_of or datetime.now(timezone.utc).date()
        window_days = self.settings.ANOMALY_WINDOW_DAYS
        recompute_start = as_of - timedelta(days=self.settings.ANOMALY_RECOMPUTE_DAYS - 1)
        history_start = recompute_start - timedelta(days=window_days)
        summary = RecomputeSummary()

        async with self.session_maker() as db:
            persistence = CostPersistenceService(db)
            series: Dict[str, Dict[date, Decimal]] = {
                ALL_SERVICES: dict(await persistence.get_daily_totals([account_id], history_start, as_of)),
            }
            series.update(await persistence.get_service_history([account_id], history_start, as_of))

            for service, points in series.items():
                for day in sorted(d for d in points if recompute_start <= d <= as_of):
                    summary.processed += 1
                    try:
                        history = [
                            points[d]
                            for d in (day - timedelta(days=i) for i in range(1, window_days + 1))
                            if d in points
                        ]
                        stat = compute_baseline(history, points[day], self.settings.ANOMALY_MIN_DATA_POINTS)
                        if stat is None:
                            summary.skipped += 1
                            continue
                        await self._upsert(db, account_id, service, day, stat)
                        await db.commit()
                        summary.written += 1
                    except Exception as e:
                        await db.rollback()
                        summary.errors += 1
                        if summary.errors == 1:
                            logger.error(
                                "anomaly_baseline_pair_failed",
                                account_id=str(account_id),
                                service=service,
                                date=day.isoformat(),
                                error=str(e),
                            )

        if summary.errors:
            logger.warning("anomaly_baseline_errors", account_id=str(account_id), errors=summary.errors)
        logger.info(
            "anomaly_baselines_recomputed",
            account_id=str(account_id),
            processed=summary.processed,
            written=summary.written,
            skipped=summary.skipped,
        )
        return summary

    async def _upsert(self, db: AsyncSession, account_id: uuid.UUID, service: str, day: date, stat: BaselineStat) -> None:
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(db, AnomalyBaseline).values(
            id=uuid.uuid4(),
            account_id=account_id,
            service_name=service,
            baseline_date=day,
            baseline_cost=stat.baseline_cost,
            current_cost=stat.current_cost,
            variance_percent=stat.variance_percent,
            is_increase=stat.is_increase,
            data_points=stat.data_points,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "service_name", "baseline_date"],
            set_={
                "baseline_cost": stmt.excluded.baseline_cost,
                "current_cost": stmt.excluded.current_cost,
                "variance_percent": stmt.excluded.variance_percent,
                "is_increase": stmt.excluded.is_increase,
                "data_points": stmt.excluded.data_points,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)

    async def get_anomalies(
        self,
        user_id: uuid.UUID,
        threshold_percent: Optional[float] = None,
        provider_id: Optional[str] = None,
        account_id: Optional[uuid.UUID] = None,
        service: Optional[str] = None,
        days: int = 7,
        limit: Optional[int] = None,
        as_of: Optional[date] = None,
        unescalated_only: bool = False,
    ) -> List[AnomalyOut]:
        threshold = self.settings.ANOMALY_DEFAULT_THRESHOLD if threshold_percent is None else threshold_percent
        as_of = as_of or datetime.now(timezone.utc).date()
        since = as_of - timedelta(days=days - 1)
        magnitude = func.abs(AnomalyBaseline.variance_percent)

        query = (
            select(AnomalyBaseline, ProviderAccount.provider, ProviderAccount.alias)
            .join(ProviderAccount, ProviderAccount.id == AnomalyBaseline.account_id)
            .where(
                ProviderAccount.user_id == user_id,
                AnomalyBaseline.baseline_date >= since,
                AnomalyBaseline.baseline_date <= as_of,
                magnitude >= threshold,
            )
            .order_by(magnitude.desc(), AnomalyBaseline.baseline_date.desc())
            .limit(limit or self.settings.ANOMALY_RESULT_LIMIT)
        )
        if provider_id:
            query = query.where(ProviderAccount.provider == get_adapter_registry().resolve_tag(provider_id))
        if account_id:
            query = query.where(AnomalyBaseline.account_id == account_id)
        if service:
            query = query.where(AnomalyBaseline.service_name == service)
        if unescalated_only:
            query = query.where(AnomalyBaseline.escalated_at.is_(None))

        async with self.session_maker() as db:
            rows = (await db.execute(query)).all()

        return [
            AnomalyOut(
                account_id=b.account_id,
                provider_id=provider,
                account_alias=alias,
                service_name=b.service_name,
                date=b.baseline_date,
                baseline_cost=Decimal(str(b.baseline_cost)).quantize(CENT, rounding=ROUND_HALF_UP),
                current_cost=Decimal(str(b.current_cost)).quantize(CENT, rounding=ROUND_HALF_UP),
                variance_percent=b.variance_percent,
                is_increase=b.is_increase,
                severity=classify_severity(b.variance_percent, Decimal(str(b.current_cost))),
                message=describe_anomaly(b.service_name, b.variance_percent, b.is_increase),
            )
            for b, provider, alias in rows
        ]

    async def escalate_significant(self, user_id: uuid.UUID, account_id: uuid.UUID, as_of: Optional[date] = None) -> Optional[AnomalyOut]:
        """
        Notify the user about the single most significant anomaly above the
        escalation threshold, and email it when the plan and preference allow.
        Each baseline row is escalated at most once.
        """
        top = await self.get_anomalies(
            user_id,
            threshold_percent=self.settings.ANOMALY_ESCALATION_THRESHOLD,
            account_id=account_id,
            limit=1,
            as_of=as_of,
            unescalated_only=True,
        )
        if not top:
            return None
        anomaly = top[0]

        async with self.session_maker() as db:
            await db.execute(
                update(AnomalyBaseline)
                .where(
                    AnomalyBaseline.account_id == anomaly.account_id,
                    AnomalyBaseline.service_name == anomaly.service_name,
                    AnomalyBaseline.baseline_date == anomaly.date,
                )
                .values(escalated_at=datetime.now(timezone.utc))
            )
            await db.commit()

        if self.notifier:
            await self.notifier.notify(user_id, NotificationPayload(
                type="anomaly_detected",
                title=f"Cost anomaly on {anomaly.account_alias}",
                message=anomaly.message,
                metadata={
                    "account_id": str(anomaly.account_id),
                    "service": anomaly.service_name,
                    "date": anomaly.date.isoformat(),
                    "variance_percent": anomaly.variance_percent,
                    "severity": anomaly.severity,
                },
            ))

        if self.email_service:
            async with self.session_maker() as db:
                user = await db.get(User, user_id)
            if user and user.email_anomaly_alerts and has_feature(user.plan, FeatureFlag.EMAIL_ALERTS):
                await self.email_service.send_anomaly_alert(user.email, anomaly)
            else:
                logger.debug("anomaly_email_not_eligible", user_id=str(user_id))

        logger.info(
            "anomaly_escalated",
            user_id=str(user_id),
            account_id=str(account_id),
            service=anomaly.service_name,
            variance_percent=anomaly.variance_percent,
        )
        return anomaly

    async def run_post_sync(self, user_id: uuid.UUID, account_id: uuid.UUID) -> None:
        """Background chain spawned after a successful account sync."""
        await self.recompute_recent(account_id)
        await self.escalate_significant(user_id, account_id)
