import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, Uuid, false, true
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spendsync.db.base import Base

if TYPE_CHECKING:
    from spendsync.models.provider_account import ProviderAccount


class User(Base):
    """
    Owner of provider accounts. Rows are created by the (external) auth layer;
    the pipeline reads the plan and alert preferences for gating.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    plan: Mapped[str] = mapped_column(String(20), default="free", server_default="free")  # free, starter, pro

    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    email_anomaly_alerts: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    accounts: Mapped[list["ProviderAccount"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
