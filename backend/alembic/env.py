"""
Alembic environment for the office-hours schema.

The target URL comes from settings (DATABASE_URL_SYNC) unless overridden on
the command line with `alembic -x url=sqlite:///office_hours.db upgrade head`.
SQLite targets are migrated in batch mode since it cannot ALTER constraints.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from officehours.core.config import get_settings
from officehours.db.base import Base
from officehours.models import AttendanceTransition, Booking, Event, Slot  # noqa: F401 - registers tables on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def resolve_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("url")
    return override or get_settings().DATABASE_URL_SYNC


def configure_options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline(url: str) -> None:
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online(url: str) -> None:
    config.set_main_option("sqlalchemy.url", url)
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **configure_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline(resolve_url())
else:
    run_migrations_online(resolve_url())
