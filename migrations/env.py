import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from spendsync.db.base import Base
from spendsync.db.session import _connect_args
# Import all models so Base knows about them!
from spendsync.models.user import User  # noqa: F401
from spendsync.models.provider_account import ProviderAccount  # noqa: F401
from spendsync.models.costs import CostSnapshot, DailyCostPoint  # noqa: F401
from spendsync.models.anomaly_baseline import AnomalyBaseline  # noqa: F401
from spendsync.models.forecast_scenario import ForecastScenario  # noqa: F401
from spendsync.models.optimization import OptimizationRecommendation  # noqa: F401
from spendsync.models.notification import Notification  # noqa: F401

from spendsync.core.config import get_settings


settings = get_settings()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a database connection."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    # Same SSL handling as the application engine
    connectable = create_async_engine(
        settings.DATABASE_URL,
        poolclass=pool.NullPool,
        connect_args=_connect_args(settings.DATABASE_URL, settings.DB_SSL_MODE),
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    # Escape % characters for ConfigParser interpolation
    config.set_main_option("sqlalchemy.url", settings.DATABASE_URL.replace("%", "%%"))
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
