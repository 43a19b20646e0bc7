import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendsync.core.config import get_settings
from spendsync.core.metrics import SCHEDULED_SYNC_RUNS
from spendsync.core.tier_guard import FeatureFlag, has_feature
from spendsync.models.provider_account import ProviderAccount
from spendsync.models.user import User
from spendsync.services.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

JOB_ID = "daily_cost_sync"


class SyncScheduler:
    """
    Daily auto-sync for users who opted in and whose plan includes it.

    Uses APScheduler with AsyncIOScheduler for non-blocking job execution.
    Users are synced one after another; each user's accounts still fan out
    concurrently inside the orchestrator.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        orchestrator_factory: Optional[Callable[[], SyncOrchestrator]] = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.settings = get_settings()
        self.session_maker = session_maker
        self.orchestrator_factory = orchestrator_factory or (lambda: SyncOrchestrator(session_maker))
        self._last_run_success: bool | None = None
        self._last_run_time: str | None = None
        self._started = False

    async def _eligible_users(self) -> List[User]:
        async with self.session_maker() as db:
            result = await db.execute(
                select(User)
                .where(
                    User.auto_sync_enabled.is_(True),
                    User.id.in_(
                        select(ProviderAccount.user_id).where(ProviderAccount.is_active.is_(True))
                    ),
                )
                .order_by(User.created_at)
            )
            users = result.scalars().all()
        return [u for u in users if has_feature(u.plan, FeatureFlag.SCHEDULED_SYNC)]

    async def daily_sync_job(self) -> dict:
        """Sync every eligible user. A failing user never stops the run."""
        started = time.time()
        summary = {"users": 0, "success": 0, "partial": 0, "failure": 0, "error": 0}
        logger.info("scheduler_job_starting", job=JOB_ID)

        users = await self._eligible_users()
        summary["users"] = len(users)
        orchestrator = self.orchestrator_factory()

        for user in users:
            try:
                batch = await orchestrator.sync_all(user.id)
                summary[batch.status] += 1
                SCHEDULED_SYNC_RUNS.labels(status=batch.status).inc()
            except Exception as e:
                summary["error"] += 1
                SCHEDULED_SYNC_RUNS.labels(status="error").inc()
                logger.error("scheduled_sync_user_failed", user_id=str(user.id), error=str(e))

        self._last_run_success = summary["error"] == 0 and summary["failure"] == 0
        self._last_run_time = datetime.now(timezone.utc).isoformat()
        logger.info(
            "scheduler_job_complete",
            job=JOB_ID,
            seconds=round(time.time() - started, 2),
            **summary,
        )
        return summary

    def start(self):
        trigger = CronTrigger(
            hour=self.settings.SCHEDULER_HOUR,
            minute=self.settings.SCHEDULER_MINUTE,
            timezone="UTC",
        )
        self.scheduler.add_job(
            self.daily_sync_job,
            trigger=trigger,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            misfire_grace_time=3600,
        )
        self.scheduler.start()
        self._started = True
        logger.info(
            "scheduler_started",
            hour=self.settings.SCHEDULER_HOUR,
            minute=self.settings.SCHEDULER_MINUTE,
        )

    def stop(self):
        """
        Stop the scheduler gracefully, waiting for running jobs.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self._started = False
        logger.info("scheduler_stopped")

    def get_status(self) -> dict:
        """
        Return scheduler status for health checks.
        """
        return {
            # AsyncIOScheduler may finish shutting down on a later loop iteration
            "running": self._started and self.scheduler.running,
            "last_run_success": self._last_run_success,
            "last_run_time": self._last_run_time,
            "jobs": [job.id for job in self.scheduler.get_jobs()],
        }
