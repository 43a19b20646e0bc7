import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from spendsync.db.base import Base


class AnomalyBaseline(Base):
    """
    Trailing baseline for one (account, service, date) and the variance of that
    day's cost against it. Absent when there was not enough history.
    """
    __tablename__ = "anomaly_baselines"
    __table_args__ = (
        UniqueConstraint("account_id", "service_name", "baseline_date", name="uq_anomaly_baselines_account_service_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("provider_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    baseline_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    baseline_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    current_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    variance_percent: Mapped[float] = mapped_column(Float, nullable=False)
    is_increase: Mapped[bool] = mapped_column(Boolean, nullable=False)
    data_points: Mapped[int] = mapped_column(Integer, nullable=False)
    # Set once the row has been notified; later syncs do not repeat it
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
