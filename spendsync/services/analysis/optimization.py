"""
Optimization heuristics over the latest snapshot and recent anomaly baselines.
Suggestions are estimates, not billing guidance.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendsync.models.anomaly_baseline import AnomalyBaseline
from spendsync.models.costs import ALL_SERVICES, CostSnapshot
from spendsync.models.optimization import OptimizationRecommendation, RecommendationStatus

logger = structlog.get_logger()

CENT = Decimal("0.01")
CONCENTRATION_SHARE = Decimal("0.6")
CONCENTRATION_SAVING = Decimal("0.1")
GROWTH_RATIO = Decimal("1.2")
PERSISTENT_VARIANCE = 25.0
PERSISTENT_MIN_DAYS = 3
PERSISTENT_WINDOW_DAYS = 7


@dataclass
class Candidate:
    category: str
    service_name: str
    title: str
    description: str
    priority: str
    estimated_savings: Decimal

    @property
    def key(self) -> Tuple[str, str]:
        return self.category, self.service_name


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class OptimizationEngine:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @staticmethod
    def _from_snapshot(snapshot: CostSnapshot) -> List[Candidate]:
        candidates = []
        total = Decimal(str(snapshot.current_month_cost or 0))

        if total > 0:
            for svc in snapshot.services or []:
                cost = Decimal(str(svc.get("cost") or 0))
                share = cost / total
                if share > CONCENTRATION_SHARE:
                    candidates.append(Candidate(
                        category="concentration",
                        service_name=svc["name"],
                        title=f"{svc['name']} dominates spend",
                        description=(
                            f"{svc['name']} accounts for {share * 100:.0f}% of this month's cost. "
                            "Review reservations, rightsizing or commitment discounts for it."
                        ),
                        priority="high",
                        estimated_savings=_money(cost * CONCENTRATION_SAVING),
                    ))

        forecast = Decimal(str(snapshot.forecast_cost or 0))
        last_month = Decimal(str(snapshot.last_month_cost or 0))
        if last_month > 0 and forecast > last_month * GROWTH_RATIO:
            growth = (forecast - last_month) / last_month * 100
            candidates.append(Candidate(
                category="cost_growth",
                service_name=ALL_SERVICES,
                title="Month-end projection well above last month",
                description=(
                    f"Projected spend of ${forecast:,.2f} is {growth:.0f}% above last month's "
                    f"${last_month:,.2f}."
                ),
                priority="medium",
                estimated_savings=_money(forecast - last_month),
            ))
        return candidates

    @staticmethod
    def _from_baselines(baselines: List[AnomalyBaseline]) -> List[Candidate]:
        by_service: Dict[str, List[AnomalyBaseline]] = defaultdict(list)
        for b in baselines:
            by_service[b.service_name].append(b)

        candidates = []
        for service, rows in sorted(by_service.items()):
            if len(rows) < PERSISTENT_MIN_DAYS:
                continue
            excess = sum(
                (Decimal(str(r.current_cost)) - Decimal(str(r.baseline_cost)) for r in rows),
                Decimal("0"),
            ) / len(rows)
            label = "Total spend" if service == ALL_SERVICES else service
            candidates.append(Candidate(
                category="persistent_anomaly",
                service_name=service,
                title=f"{label} persistently above baseline",
                description=(
                    f"{label} ran more than {PERSISTENT_VARIANCE:.0f}% above its 30-day baseline "
                    f"on {len(rows)} of the last {PERSISTENT_WINDOW_DAYS} days."
                ),
                priority="medium",
                estimated_savings=_money(excess * 30),
            ))
        return candidates

    async def recompute(self, account_id: uuid.UUID, as_of: Optional[date] = None) -> List[OptimizationRecommendation]:
        as_of = as_of or datetime.now(timezone.utc).date()
        since = as_of - timedelta(days=PERSISTENT_WINDOW_DAYS - 1)

        async with self.session_maker() as db:
            snapshot = (await db.execute(
                select(CostSnapshot)
                .where(CostSnapshot.account_id == account_id)
                .order_by(CostSnapshot.year.desc(), CostSnapshot.month.desc())
                .limit(1)
            )).scalar_one_or_none()

            baselines = list((await db.execute(
                select(AnomalyBaseline).where(
                    AnomalyBaseline.account_id == account_id,
                    AnomalyBaseline.baseline_date >= since,
                    AnomalyBaseline.baseline_date <= as_of,
                    AnomalyBaseline.is_increase.is_(True),
                    AnomalyBaseline.variance_percent > PERSISTENT_VARIANCE,
                )
            )).scalars().all())

            candidates = (self._from_snapshot(snapshot) if snapshot else []) + self._from_baselines(baselines)

            # Dismissed and implemented suggestions are user decisions
            settled = {
                (r.category, r.service_name)
                for r in (await db.execute(
                    select(OptimizationRecommendation).where(
                        OptimizationRecommendation.account_id == account_id,
                        OptimizationRecommendation.status != RecommendationStatus.ACTIVE,
                    )
                )).scalars().all()
            }

            await db.execute(
                delete(OptimizationRecommendation).where(
                    OptimizationRecommendation.account_id == account_id,
                    OptimizationRecommendation.status == RecommendationStatus.ACTIVE,
                )
            )

            created = []
            for c in candidates:
                if c.key in settled:
                    continue
                rec = OptimizationRecommendation(
                    account_id=account_id,
                    category=c.category,
                    service_name=c.service_name,
                    title=c.title,
                    description=c.description,
                    priority=c.priority,
                    estimated_savings=c.estimated_savings,
                    status=RecommendationStatus.ACTIVE,
                )
                db.add(rec)
                created.append(rec)
            await db.commit()

        logger.info(
            "optimization_recommendations_refreshed",
            account_id=str(account_id),
            created=len(created),
            skipped_settled=len(candidates) - len(created),
        )
        return created
