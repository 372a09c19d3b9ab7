"""
Alembic environment configuration for database migrations

Uses the DATABASE_URL from constituency.config and supports both SQLite and
PostgreSQL. Migrations run on a synchronous engine, so async driver URLs are
converted to their sync equivalents.
"""
from logging.config import fileConfig

from sqlalchemy import pool, create_engine

from alembic import context

# Importing the models registers every table on Base.metadata
from constituency.db.database import Base
from constituency.config import config

alembic_config = context.config

# init_db runs migrations in-process and keeps the application's logging setup
if alembic_config.config_file_name is not None and alembic_config.attributes.get("configure_logger", True):
    fileConfig(alembic_config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata

sync_url = config.DATABASE_URL.replace("sqlite+aiosqlite://", "sqlite://")
sync_url = sync_url.replace("postgresql+asyncpg://", "postgresql://")
alembic_config.set_main_option("sqlalchemy.url", sync_url)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL without a connection."""
    url = alembic_config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a synchronous engine."""
    connectable = create_engine(
        sync_url,
        poolclass=pool.NullPool,
        echo=False,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
