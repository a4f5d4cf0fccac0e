# alembic/env.py
import os
import sys
from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from alembic import context

# make sure project root is on sys.path so `digpaper` imports work without an install
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from digpaper.config import settings as app_settings  # noqa: E402
from digpaper.models import Base  # noqa: E402

# this is the Alembic Config object
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _to_sync_url(url: str) -> str:
    """
    Alembic runs on a sync engine: sqlite+aiosqlite -> sqlite (stdlib driver),
    postgresql+asyncpg -> postgresql+psycopg2.
    """
    return url.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg2")


# an explicit sqlalchemy.url (alembic.ini or -x overrides) wins over DATABASE_URL
db_url = config.get_main_option("sqlalchemy.url") or app_settings.database_url
config.set_main_option("sqlalchemy.url", _to_sync_url(db_url))


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    url = config.get_main_option("sqlalchemy.url")
    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
