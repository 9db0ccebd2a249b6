from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI


def _validate_env() -> None:
    """
    Validate required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    database_urls = [
        os.getenv(name, "").strip()
        for name in ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
    ]
    if not any(database_urls):
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL "
            "or LOCAL_DATABASE_URL. Only PostgreSQL is supported."
        )

    # --- Credential encryption key ---------------------------------------
    encryption_key = os.getenv("CREDENTIALS_ENCRYPTION_KEY", "").strip()
    if not encryption_key:
        errors.append(
            "CREDENTIALS_ENCRYPTION_KEY is not set. Provide a Fernet key "
            "(cryptography.fernet.Fernet.generate_key())."
        )
    else:
        from cryptography.fernet import Fernet

        try:
            Fernet(encryption_key.encode("utf-8"))
        except ValueError:
            errors.append("CREDENTIALS_ENCRYPTION_KEY is not a valid Fernet key.")

    if errors:
        raise RuntimeError(
            "Startup validation failed, missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _check_db() -> None:
    """Open a session and run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    from sqlalchemy import text

    from db.session import SessionLocal

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc


def _check_schema() -> None:
    """
    Every table registered on Base.metadata must exist in the database.
    Missing tables abort startup; run ``alembic upgrade head`` first.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401  registers ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    actual: set[str] = set(sa_inspect(get_engine()).get_table_names())
    missing = set(Base.metadata.tables.keys()) - actual

    if missing:
        logging.getLogger(__name__).critical(
            "Schema mismatch: %d table(s) absent from the database: %s. "
            "Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Validate DB connectivity and schema, start the scheduler on boot; shut it down on exit."""
    log = logging.getLogger(__name__)
    _check_db()
    log.info("Database connectivity confirmed")
    _check_schema()
    log.info("Database schema validated")

    from app.config import get_processing_settings
    from app.scheduler.jobs import build_scheduler
    from app.services.processing_coordinator import ThreadPoolTaskExecutor

    executor = ThreadPoolTaskExecutor(max_workers=get_processing_settings().executor_workers)
    scheduler = build_scheduler(executor)
    scheduler.start()
    log.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        scheduler.shutdown(wait=True)
        executor.shutdown(wait=False)
        log.info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Metadata Dictionary API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import (
        dictionary_export_router,
        dictionary_preview_router,
        dictionary_processing_router,
        system_router,
    )

    application.include_router(dictionary_preview_router)
    application.include_router(dictionary_processing_router)
    application.include_router(dictionary_export_router)
    application.include_router(system_router)

    @application.get("/health")
    def healthcheck() -> dict[str, object]:
        from app.services.processing_coordinator import get_processing_coordinator

        return {
            "status": "ok",
            "activeJobs": len(get_processing_coordinator().list_active()),
        }

    return application


app = create_app()
