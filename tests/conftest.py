import os
# Configure settings BEFORE any spendsync imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["TESTING"] = "True"
os.environ["DB_SSL_MODE"] = "disable"
os.environ["RATELIMIT_ENABLED"] = "False"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-0123456789abcdef"
os.environ["KDF_SALT"] = "test-salt-123456789012345678901234"

import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Dict, Iterable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Ensure all models are registered in the metadata for SQLAlchemy mappers
from spendsync.db.base import Base
from spendsync.models.user import User
from spendsync.models.provider_account import ConnectionType, ProviderAccount
from spendsync.models.costs import ALL_SERVICES, CostSnapshot, DailyCostPoint  # noqa: F401
from spendsync.models.anomaly_baseline import AnomalyBaseline  # noqa: F401
from spendsync.models.forecast_scenario import ForecastScenario  # noqa: F401
from spendsync.models.optimization import OptimizationRecommendation  # noqa: F401
from spendsync.models.notification import Notification  # noqa: F401
from spendsync.core.security import encrypt_credentials


@pytest.fixture
async def engine(tmp_path):
    """
    File-backed SQLite per test. Account tasks open their own sessions
    concurrently, which a single shared in-memory connection cannot serve.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'spendsync-test.db'}",
        poolclass=NullPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make_user(plan: str = "free", auto_sync_enabled: bool = False, email_anomaly_alerts: bool = True) -> User:
        user = User(
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            plan=plan,
            auto_sync_enabled=auto_sync_enabled,
            email_anomaly_alerts=email_anomaly_alerts,
        )
        db.add(user)
        await db.commit()
        return user
    return _make_user


@pytest.fixture
def make_account(db):
    async def _make_account(
        user: User,
        provider: str = "aws",
        alias: Optional[str] = None,
        credentials: Optional[Dict[str, str]] = None,
        connection_type: str = ConnectionType.MANUAL,
        role_arn: Optional[str] = None,
        external_id: Optional[str] = None,
        is_active: bool = True,
    ) -> ProviderAccount:
        if credentials is None and connection_type == ConnectionType.MANUAL:
            credentials = {"access_key_id": "AKIATEST", "secret_access_key": "secret"}
        account = ProviderAccount(
            user_id=user.id,
            provider=provider,
            alias=alias or f"{provider}-{uuid.uuid4().hex[:6]}",
            connection_type=connection_type,
            credentials_encrypted=encrypt_credentials(credentials) if credentials else None,
            role_arn=role_arn,
            external_id=external_id,
            is_active=is_active,
        )
        db.add(account)
        await db.commit()
        return account
    return _make_account


@pytest.fixture
def add_daily_points(db):
    """Insert DailyCostPoints: {date: cost} for one account and service."""
    async def _add(account_id: uuid.UUID, points: Dict[date, Decimal], service: str = ALL_SERVICES) -> None:
        for day, cost in points.items():
            db.add(DailyCostPoint(account_id=account_id, usage_date=day, service_name=service, cost=Decimal(str(cost))))
        await db.commit()
    return _add


def daily_series(end: date, values: Iterable) -> Dict[date, Decimal]:
    """Map consecutive days ending at `end` to `values` (oldest first)."""
    values = list(values)
    start = end - timedelta(days=len(values) - 1)
    return {start + timedelta(days=i): Decimal(str(v)) for i, v in enumerate(values)}


@pytest.fixture
def series():
    return daily_series
