"""
app/scheduler/jobs.py

APScheduler-based background maintenance for the dictionary service.

Schedule
--------
  cache_sweep           : every CACHE_SWEEP_INTERVAL_SECONDS (default 300 s);
                          drops expired entries from the query and metadata caches
  pending_dictionaries  : every PROCESSING_PENDING_SWEEP_SECONDS
                          (default 120 s); starts a job for every dictionary
                          left in ``generating`` without a live job

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.cache.bounded_cache import get_metadata_cache, get_query_cache
from app.config import get_cache_settings, get_processing_settings
from app.services.processing_coordinator import (
    ProcessingCoordinator,
    ThreadPoolTaskExecutor,
    get_processing_coordinator,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Job: cache sweep
# ---------------------------------------------------------------------------


def run_cache_sweep() -> None:
    removed = {
        "query": get_query_cache().sweep_expired(),
        "metadata": get_metadata_cache().sweep_expired(),
    }
    if any(removed.values()):
        logger.info("Scheduler: cache_sweep removed query=%d metadata=%d", removed["query"], removed["metadata"])


# ---------------------------------------------------------------------------
# Job: pending dictionaries
# ---------------------------------------------------------------------------


def run_pending_dictionaries(
    executor: ThreadPoolTaskExecutor,
    coordinator: ProcessingCoordinator | None = None,
) -> None:
    """
    Pick up dictionaries stuck in ``generating``, e.g. after a restart.
    Failures are logged; the next run retries.
    """
    coordinator = coordinator or get_processing_coordinator()
    try:
        started = coordinator.process_all_pending(executor=executor)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Scheduler: pending_dictionaries failed: %s", exc)
        return
    if started:
        logger.info("Scheduler: pending_dictionaries started=%d", len(started))


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler(executor: ThreadPoolTaskExecutor | None = None) -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    cache_settings = get_cache_settings()
    processing_settings = get_processing_settings()
    executor = executor or ThreadPoolTaskExecutor(max_workers=processing_settings.executor_workers)

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_cache_sweep,
        trigger="interval",
        seconds=cache_settings.sweep_interval_seconds,
        id="cache_sweep",
        name="Expired cache entry sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        run_pending_dictionaries,
        trigger="interval",
        seconds=processing_settings.pending_sweep_interval_seconds,
        args=[executor],
        id="pending_dictionaries",
        name="Pending dictionary pickup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
