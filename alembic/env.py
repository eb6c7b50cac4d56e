import re
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from boltstore.core.config import settings
from boltstore.core.db import Base
from boltstore.models import entities  # noqa: F401  registers the tables on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Migrations are written by hand with op.*; the metadata is here so
# `alembic check` can compare the ORM models against the database.
target_metadata = Base.metadata

# Migrations run on the sync psycopg driver; the app itself uses asyncpg.
config.set_main_option(
    "sqlalchemy.url",
    re.sub(r"^postgresql(\+\w+)?://", "postgresql+psycopg://", settings.DATABASE_URL),
)


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
