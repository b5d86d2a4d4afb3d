"""Alembic runs against the same DATABASE_URL and table metadata as the app.

alembic.ini puts the project root on sys.path (prepend_sys_path = .).
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

import app.models  # noqa: F401  orders, payment events and logs register on SQLModel.metadata
from app.core.database import DATABASE_URL

config = context.config
config.set_main_option("sqlalchemy.url", str(DATABASE_URL).replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _configure(dialect: str, **kwargs) -> None:
    context.configure(
        target_metadata=SQLModel.metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=dialect == "sqlite",
        **kwargs,
    )


def run_offline(url: str) -> None:
    _configure(url.split(":", 1)[0].split("+", 1)[0], url=url, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(connection.dialect.name, connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline(config.get_main_option("sqlalchemy.url"))
else:
    run_online()
