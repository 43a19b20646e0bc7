"""
Sync Orchestrator

Fans out one task per selected account, waits for every task to settle and
aggregates the outcomes into a success / partial / failure batch result.

Per account:
1. Resolve live credentials
2. Read the cost cache unless a refresh is forced
3. On a miss, fetch from the provider, synthesize daily points and cache the draft
4. Validate, then sanitize the draft
5. Enhance and persist the snapshot plus daily points
6. Spawn anomaly and optimization recomputes (not awaited)
7. Mark the account healthy and notify the owner
"""

import time
import uuid
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendsync.core.concurrency import gather_settled, spawn_background
from spendsync.core.exceptions import ResourceNotFoundError, SpendSyncException, ValidationError
from spendsync.core.metrics import COST_CACHE_TOTAL, SYNC_ACCOUNTS_TOTAL, SYNC_DURATION
from spendsync.models.provider_account import ProviderAccount
from spendsync.schemas.costs import AccountSyncResult, BatchSyncResult, SyncError
from spendsync.services.adapters.cost_cache import CostCache, get_cost_cache
from spendsync.services.adapters.registry import AdapterRegistry, get_adapter_registry
from spendsync.services.analysis.anomaly import AnomalyBaselineEngine
from spendsync.services.analysis.optimization import OptimizationEngine
from spendsync.services.costs.persistence import CostPersistenceService
from spendsync.services.credentials.resolver import CredentialResolver
from spendsync.services.notifications.dispatcher import NotificationDispatcher
from spendsync.services.notifications.email_service import EmailService
from spendsync.services.sync.enhancer import SnapshotEnhancer
from spendsync.services.sync.validation import DraftValidator, with_daily_totals

logger = structlog.get_logger()


class SyncOrchestrator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: Optional[AdapterRegistry] = None,
        resolver: Optional[CredentialResolver] = None,
        cache: Optional[CostCache] = None,
        notifier: Optional[NotificationDispatcher] = None,
        anomaly_engine_factory: Optional[Callable[[], AnomalyBaselineEngine]] = None,
        optimization_engine_factory: Optional[Callable[[], OptimizationEngine]] = None,
    ):
        self.session_maker = session_maker
        self.registry = registry or get_adapter_registry()
        self.resolver = resolver or CredentialResolver(self.registry)
        self.cache = cache or get_cost_cache()
        self.notifier = notifier or NotificationDispatcher(session_maker)
        self.anomaly_engine_factory = anomaly_engine_factory or (
            lambda: AnomalyBaselineEngine(session_maker, self.notifier, EmailService.from_settings())
        )
        self.optimization_engine_factory = optimization_engine_factory or (
            lambda: OptimizationEngine(session_maker)
        )

    @staticmethod
    def _date_range(start_date: Optional[date], end_date: Optional[date]) -> Tuple[date, date]:
        end = end_date or datetime.now(timezone.utc).date()
        start = start_date or end.replace(day=1)
        if start > end:
            raise ValidationError(f"start_date {start} is after end_date {end}")
        return start, end

    async def _select_accounts(
        self,
        user_id: uuid.UUID,
        account_id: Optional[uuid.UUID] = None,
        provider_id: Optional[str] = None,
    ) -> List[ProviderAccount]:
        query = select(ProviderAccount).where(
            ProviderAccount.user_id == user_id,
            ProviderAccount.is_active.is_(True),
        )
        if account_id:
            query = query.where(ProviderAccount.id == account_id)
        if provider_id:
            query = query.where(ProviderAccount.provider == self.registry.resolve_tag(provider_id))
        async with self.session_maker() as db:
            result = await db.execute(query.order_by(ProviderAccount.created_at))
            return list(result.scalars().all())

    async def sync_all(
        self,
        user_id: uuid.UUID,
        account_id: Optional[uuid.UUID] = None,
        provider_id: Optional[str] = None,
        force: bool = False,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> BatchSyncResult:
        start, end = self._date_range(start_date, end_date)
        accounts = await self._select_accounts(user_id, account_id, provider_id)
        if not accounts:
            logger.info("sync_no_active_accounts", user_id=str(user_id))
            return BatchSyncResult.from_outcomes([], [])

        logger.info(
            "batch_sync_started",
            user_id=str(user_id),
            accounts=len(accounts),
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            force=force,
        )
        outcomes = await gather_settled(
            self._sync_one(user_id, account, start, end, force) for account in accounts
        )

        results: List[AccountSyncResult] = []
        errors: List[SyncError] = []
        for account, outcome in zip(accounts, outcomes):
            if outcome.ok:
                results.append(outcome.value)
            else:
                errors.append(self._to_sync_error(account, outcome.error))

        batch = BatchSyncResult.from_outcomes(results, errors)
        logger.info(
            "batch_sync_complete",
            user_id=str(user_id),
            status=batch.status,
            succeeded=len(results),
            failed=len(errors),
        )
        return batch

    async def sync_account(
        self,
        user_id: uuid.UUID,
        account_id: uuid.UUID,
        force: bool = False,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> AccountSyncResult:
        """Sync one account, raising its own error (with hint) on failure."""
        start, end = self._date_range(start_date, end_date)
        accounts = await self._select_accounts(user_id, account_id=account_id)
        if not accounts:
            raise ResourceNotFoundError(f"Active account {account_id} not found")
        return await self._sync_one(user_id, accounts[0], start, end, force)

    def _to_sync_error(self, account: ProviderAccount, error: Exception) -> SyncError:
        if isinstance(error, SpendSyncException):
            return SyncError(
                account_id=account.id,
                provider_id=account.provider,
                error=error.message,
                code=error.code,
                hint=error.hint,
                retryable=error.retryable,
            )
        return SyncError(
            account_id=account.id,
            provider_id=account.provider,
            error="Unexpected error during sync.",
        )

    async def _sync_one(
        self,
        user_id: uuid.UUID,
        account: ProviderAccount,
        start: date,
        end: date,
        force: bool,
    ) -> AccountSyncResult:
        started = time.perf_counter()
        log = logger.bind(user_id=str(user_id), account_id=str(account.id), provider=account.provider)
        try:
            adapter = self.registry.get(account.provider)
            credentials = await self.resolver.resolve(account)

            draft = None
            if force:
                COST_CACHE_TOTAL.labels(result="bypass").inc()
            else:
                draft = await self.cache.get_cost_draft(account.id, start, end)
            from_cache = draft is not None

            if draft is None:
                draft = await adapter.fetch_cost_data(credentials, start, end)
                if not draft.has_daily_granularity:
                    draft = draft.model_copy(update={"daily": adapter.synthesize_daily_data(draft, start, end)})
                await self.cache.set_cost_draft(account.id, start, end, draft)

            try:
                DraftValidator.validate(draft)
            except ValidationError as e:
                log.warning("draft_validation_failed", issue_count=len(e.issues), issues=e.issues[:10])
            draft = DraftValidator.sanitize(draft)
            daily = with_daily_totals(draft.daily)

            synced_at = datetime.now(timezone.utc)
            async with self.session_maker() as db:
                persistence = CostPersistenceService(db)
                values = await SnapshotEnhancer(persistence).enhance(account.id, draft, daily)
                saved = await persistence.save_sync_result(account.id, values, daily)
                await persistence.mark_sync_success(account.id, synced_at)
        except Exception as e:
            SYNC_ACCOUNTS_TOTAL.labels(provider=account.provider, outcome="failure").inc()
            await self._record_failure(user_id, account, e)
            raise
        finally:
            SYNC_DURATION.labels(provider=account.provider).observe(time.perf_counter() - started)

        SYNC_ACCOUNTS_TOTAL.labels(provider=adapter.provider_id, outcome="success").inc()

        spawn_background(
            self.anomaly_engine_factory().run_post_sync(user_id, account.id),
            name="anomaly_recompute",
            account_id=str(account.id),
        )
        spawn_background(
            self.optimization_engine_factory().recompute(account.id),
            name="optimization_recompute",
            account_id=str(account.id),
        )

        await self.notifier.notify_sync_success(
            user_id, account.alias, adapter.provider_id, values.current_month_cost, account.id
        )
        log.info(
            "account_sync_success",
            from_cache=from_cache,
            current_month_cost=str(values.current_month_cost),
            daily_points=saved["daily_points"],
        )
        return AccountSyncResult(
            account_id=account.id,
            provider_id=adapter.provider_id,
            alias=account.alias,
            month=values.month,
            year=values.year,
            current_month_cost=values.current_month_cost,
            last_month_cost=values.last_month_cost,
            forecast_cost=values.forecast_cost,
            forecast_confidence=values.forecast_confidence,
            daily_points=saved["daily_points"],
            from_cache=from_cache,
            synced_at=synced_at,
        )

    async def _record_failure(self, user_id: uuid.UUID, account: ProviderAccount, error: Exception) -> None:
        """Mark the account as errored and tell its owner. Never raises."""
        if isinstance(error, SpendSyncException):
            message, hint = error.message, error.hint
            logger.warning(
                "account_sync_failed",
                account_id=str(account.id),
                provider=account.provider,
                code=error.code,
                error=error.message,
            )
        else:
            message, hint = "Unexpected error during sync.", None
            logger.exception("account_sync_crashed", account_id=str(account.id), provider=account.provider)

        try:
            async with self.session_maker() as db:
                await CostPersistenceService(db).mark_sync_failure(account.id, message)
        except SQLAlchemyError as e:
            logger.warning("mark_sync_failure_failed", account_id=str(account.id), error=str(e))

        await self.notifier.notify_sync_failure(user_id, account.alias, account.provider, message, hint, account.id)
