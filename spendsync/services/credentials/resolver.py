"""
Credential Resolver

Turns a stored ProviderAccount into a LiveCredentials value for one sync.

- Manual connections: decrypt the stored credential object and check the
  provider's required fields.
- Automated connections: exchange the stored role ARN + external id for
  short-lived credentials through the provider adapter (confused-deputy
  protection is the external id the customer's trust policy requires).

Nothing resolved here is cached or written back to the database.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

import structlog

from spendsync.core.config import get_settings
from spendsync.core.exceptions import ConfigurationError, SpendSyncException
from spendsync.core.logging import audit_log
from spendsync.core.security import decrypt_credentials
from spendsync.models.provider_account import ProviderAccount
from spendsync.services.adapters.registry import AdapterRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class LiveCredentials:
    """Usable credential set for one sync. Never persisted; repr hides values."""
    provider_id: str
    values: Mapping[str, Any] = field(repr=False)
    expires_at: Optional[datetime] = None
    temporary: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]


def build_credentials(provider_id: str, values: Mapping[str, Any], expires_at: Optional[datetime] = None, temporary: bool = False) -> LiveCredentials:
    return LiveCredentials(
        provider_id=provider_id,
        values=MappingProxyType(dict(values)),
        expires_at=expires_at,
        temporary=temporary,
    )


class CredentialResolver:
    def __init__(self, registry: AdapterRegistry):
        self.registry = registry
        self.settings = get_settings()

    async def resolve(self, account: ProviderAccount) -> LiveCredentials:
        adapter = self.registry.get(account.provider)
        try:
            if account.is_automated:
                return await self._resolve_automated(account, adapter)
            return self._resolve_manual(account, adapter)
        except SpendSyncException as e:
            audit_log(
                "credential_resolution_failed",
                user_id=account.user_id,
                details={"account_id": str(account.id), "provider": adapter.provider_id, "code": e.code},
            )
            raise

    def _resolve_manual(self, account: ProviderAccount, adapter) -> LiveCredentials:
        values = decrypt_credentials(account.credentials_encrypted)
        missing = adapter.missing_fields(values)
        if missing:
            raise ConfigurationError(
                f"Missing required {adapter.display_name} credentials: {', '.join(missing)}",
                details={"missing_fields": missing},
                hint="Edit the connection and provide every required credential field.",
            )
        return build_credentials(adapter.provider_id, values)

    async def _resolve_automated(self, account: ProviderAccount, adapter) -> LiveCredentials:
        role_arn = (account.role_arn or "").strip()
        external_id = (account.external_id or "").strip()
        if not role_arn or not external_id:
            raise ConfigurationError(
                "Automated connection missing role ARN or external ID.",
                hint="Re-run the connection setup so the role ARN and external ID are stored.",
            )

        session_name = f"{self.settings.AWS_ROLE_SESSION_PREFIX}-{str(account.id)[:8]}-{int(time.time())}"
        credentials = await adapter.exchange_role_credentials(
            role_arn=role_arn,
            external_id=external_id,
            session_name=session_name,
            duration_seconds=self.settings.AWS_ROLE_SESSION_DURATION_SECONDS,
        )
        audit_log(
            "role_credentials_issued",
            user_id=account.user_id,
            details={
                "account_id": str(account.id),
                "provider": adapter.provider_id,
                "expires_at": credentials.expires_at.isoformat() if credentials.expires_at else None,
            },
        )
        return credentials
