"""
Notification Dispatcher

In-app notification sink used by the sync pipeline. Delivery is best-effort:
a failing notification is logged and never affects the caller's outcome.
"""

import uuid
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendsync.models.notification import Notification

logger = structlog.get_logger()


class NotificationPayload(BaseModel):
    type: str  # sync_success, sync_failure, anomaly_detected
    title: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class NotificationDispatcher:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def notify(self, user_id: uuid.UUID, payload: NotificationPayload) -> Optional[uuid.UUID]:
        try:
            async with self.session_maker() as db:
                notification = Notification(
                    user_id=user_id,
                    type=payload.type,
                    title=payload.title,
                    message=payload.message,
                    payload=payload.metadata or None,
                )
                db.add(notification)
                await db.commit()
                logger.info("notification_dispatched", user_id=str(user_id), type=payload.type)
                return notification.id
        except Exception as e:
            logger.warning("notification_failed", user_id=str(user_id), type=payload.type, error=str(e))
            return None

    async def notify_sync_success(self, user_id: uuid.UUID, account_alias: str, provider_id: str, current_cost, account_id: uuid.UUID) -> None:
        await self.notify(user_id, NotificationPayload(
            type="sync_success",
            title=f"{account_alias} synced",
            message=f"Month-to-date spend for {account_alias} is ${current_cost:,.2f}.",
            metadata={"account_id": str(account_id), "provider": provider_id},
        ))

    async def notify_sync_failure(self, user_id: uuid.UUID, account_alias: str, provider_id: str, error: str, hint: Optional[str], account_id: uuid.UUID) -> None:
        message = f"Sync failed for {account_alias}: {error}"
        if hint:
            message = f"{message} {hint}"
        await self.notify(user_id, NotificationPayload(
            type="sync_failure",
            title=f"{account_alias} sync failed",
            message=message,
            metadata={"account_id": str(account_id), "provider": provider_id},
        ))
