import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from spendsync.db.base import Base


class ForecastScenario(Base):
    """
    A user-authored what-if definition. Only the definition is stored; the
    scenario forecast is recomputed on demand.
    """
    __tablename__ = "forecast_scenarios"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ordered list of ScenarioAdjustment dicts
    adjustments: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=list)
    forecast_months: Mapped[int] = mapped_column(Integer, default=6)

    provider_filter: Mapped[str | None] = mapped_column(String(50), nullable=True)
    account_filter: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    last_computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
