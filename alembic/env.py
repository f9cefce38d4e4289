from logging.config import fileConfig

from alembic import context

from knowledge_core import models  # noqa: F401  (registers tables on Base.metadata)
from knowledge_core.config import get_settings
from knowledge_core.database import Base, get_sync_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    db_url = get_settings().db_url
    if not db_url:
        raise ValueError("DB_URL not configured")

    context.configure(
        url=db_url.replace("postgresql+asyncpg://", "postgresql+psycopg://"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = get_sync_engine()
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
