import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from automation.core.config import settings
from automation.db.base import Base
import automation.models  # noqa: F401  registers every table on Base.metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def get_url() -> str:
    """
    Sync URL for migrations. ``alembic -x db_url=...`` wins over settings;
    async drivers are swapped for their sync counterparts.
    """
    url = context.get_x_argument(as_dictionary=True).get("db_url") or settings.SQLALCHEMY_DATABASE_URI
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


def configure_options(url: str) -> dict:
    options = {"target_metadata": Base.metadata, "compare_type": True}
    if url.startswith("sqlite"):
        # SQLite cannot ALTER most columns in place
        options["render_as_batch"] = True
    return options


def run_migrations_offline():
    url = get_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    url = get_url()
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    logger.info(f"Running migrations against {connectable.url.render_as_string(hide_password=True)}")
    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
