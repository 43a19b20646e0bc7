import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Integer, JSON, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from spendsync.db.base import Base

# Service name under which the account-wide daily total is stored
ALL_SERVICES = "*"


class CostSnapshot(Base):
    """
    Monthly cost summary for one account. Overwritten (never appended) by each sync.
    """
    __tablename__ = "cost_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "month", "year", name="uq_cost_snapshots_account_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("provider_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Financials (DECIMAL for money)
    current_month_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    last_month_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    forecast_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    forecast_confidence: Mapped[str] = mapped_column(String(10), default="low")  # low, medium, high
    credits: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    savings: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # [{"name": ..., "cost": "12.34", "change_percent": 4.2}, ...]
    services: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=list)
    usage_metrics: Mapped[list | None] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=True)


class DailyCostPoint(Base):
    """
    One day of cost for one account and service. Idempotent upsert target.
    """
    __tablename__ = "daily_cost_points"
    __table_args__ = (
        UniqueConstraint("account_id", "usage_date", "service_name", name="uq_daily_cost_points_account_date_service"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("provider_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, default=ALL_SERVICES)
    cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    # True when spread from an invoice total rather than reported per day
    is_estimated: Mapped[bool] = mapped_column(default=False)
