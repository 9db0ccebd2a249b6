from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from db.base import Base
from db.config import load_env_files, normalize_postgres_url, resolve_database_url
from db.models import DictionaryVariable, MetadataDictionary, RemoteInstance  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Autogenerate only considers the dictionary tables.
MANAGED_TABLES = frozenset(target_metadata.tables)


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table":
        return name in MANAGED_TABLES
    table = getattr(obj, "table", None)
    if table is not None:
        return table.name in MANAGED_TABLES
    return True


def _resolve_database_url() -> str:
    """
    ``-x db_url=...`` wins, then ALEMBIC_DATABASE_URL, then whatever the
    service itself would connect to.
    """

    load_env_files()

    x_args = context.get_x_argument(as_dictionary=True)
    candidate = x_args.get("db_url") or os.getenv("ALEMBIC_DATABASE_URL")
    url = normalize_postgres_url(candidate) if candidate else resolve_database_url()

    if not url.startswith("postgresql"):
        raise RuntimeError("Dictionary migrations target PostgreSQL only.")
    return url


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=_include_object,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(
        url=_resolve_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {}) or {}
    section["sqlalchemy.url"] = _resolve_database_url()

    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
