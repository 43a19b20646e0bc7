import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid, true
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy_utils import StringEncryptedType
from sqlalchemy_utils.types.encrypted.encrypted_type import AesEngine

from spendsync.core.config import get_settings
from spendsync.db.base import Base

if TYPE_CHECKING:
    from spendsync.models.user import User

settings = get_settings()
_encryption_key = settings.ENCRYPTION_KEY


class ConnectionType:
    MANUAL = "manual"
    AUTOMATED = "automated"


class AccountStatus:
    PENDING = "pending"
    HEALTHY = "healthy"
    ERROR = "error"


class ProviderAccount(Base):
    """
    One connected billing relationship with an external provider.

    Security:
    - credentials_encrypted holds a Fernet-encrypted JSON object (manual keys)
    - external_id is encrypted at rest (AES); role_arn is not secret
    - resolved temporary credentials are never written here
    """
    __tablename__ = "provider_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # registry tag, e.g. 'aws'
    alias: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    # manual | automated (automated_* variants are treated as automated)
    connection_type: Mapped[str] = mapped_column(String(50), default=ConnectionType.MANUAL, server_default=ConnectionType.MANUAL)
    credentials_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Role-based (automated) connections
    role_arn: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    external_id: Mapped[str | None] = mapped_column(
        StringEncryptedType(String, _encryption_key, AesEngine, "pkcs5"),
        nullable=True
    )

    # Sync health
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=AccountStatus.PENDING, server_default=AccountStatus.PENDING)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="accounts")

    @property
    def is_automated(self) -> bool:
        return (self.connection_type or "").lower().startswith(ConnectionType.AUTOMATED)

    def __repr__(self) -> str:
        return f"<ProviderAccount {self.provider}:{self.alias} ({self.id})>"
