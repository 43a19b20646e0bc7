import uuid
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from spendsync.db.base import Base


class RecommendationStatus:
    ACTIVE = "active"
    DISMISSED = "dismissed"
    IMPLEMENTED = "implemented"


class OptimizationRecommendation(Base):
    """Heuristic, non-authoritative savings suggestion for one account."""
    __tablename__ = "optimization_recommendations"
    __table_args__ = (
        UniqueConstraint("account_id", "category", "service_name", name="uq_optimization_recommendations_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("provider_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # concentration, cost_growth, persistent_anomaly
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, default="*")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="medium")  # low, medium, high
    estimated_savings: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), default=RecommendationStatus.ACTIVE)
