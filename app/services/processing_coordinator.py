"""
Dictionary processing coordinator: one in-process job per dictionary.

A job fetches every row of the dictionary's SQL view, maps each row into a
variable, upserts it, and finally writes recomputed dictionary statistics.
Row-level failures are counted and never abort the loop. Cancellation is
cooperative and checked between pages and between rows.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Protocol

from fastapi import BackgroundTasks

from app.config import ProcessingSettings, get_export_settings, get_processing_settings
from app.connectors.sql_view_connector import SqlViewExecutor
from app.domain.dictionary import DictionaryOutcome, DictionaryRecord, VariableDraft
from app.domain.remote import RemoteHandle
from app.errors import ConflictError, DictionaryServiceError, NotFoundError
from app.logging_utils import log_job_event
from app.mappers.api_urls import derive_urls
from app.mappers.row_mapper import map_row
from app.repositories.dictionary_store import DictionaryStore, SQLAlchemyDictionaryStore
from app.services.credential_service import CredentialService
from db.models.dictionary import DictionaryStatus, ProcessingMethod
from db.models.dictionary_variable import VariableStatus

logger = logging.getLogger(__name__)

_ERROR_MESSAGE_LIMIT = 2000


class ProcessingTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class ThreadPoolTaskExecutor:
    """
    Executor for jobs started outside a request, e.g. by the scheduler.
    """

    def __init__(self, max_workers: int) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dictionary-job")

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._pool.submit(task, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class JobMode:
    START = "start"
    REPROCESS = "reprocess"
    SAVE_PREVIEW = "save_preview"


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ProcessingOptions:
    batch_size: int = 50
    delay_between_items_ms: int = 0
    page_size: int | None = None
    use_cache: bool = True

    @classmethod
    def from_settings(cls, settings: ProcessingSettings, overrides: dict[str, Any] | None = None) -> ProcessingOptions:
        overrides = overrides or {}
        return cls(
            batch_size=max(1, int(overrides.get("batch_size") or settings.batch_size)),
            delay_between_items_ms=max(
                0,
                int(overrides.get("delay_between_items_ms", settings.delay_between_items_ms) or 0),
            ),
            page_size=int(overrides["page_size"]) if overrides.get("page_size") else None,
            use_cache=bool(overrides.get("use_cache", True)),
        )


@dataclass
class ProcessingJob:
    """
    In-memory state of one running job. Counters are written only by the
    job's own thread.
    """

    dictionary_id: uuid.UUID
    mode: str
    options: ProcessingOptions
    max_recorded_errors: int = 10
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = field(default_factory=time.monotonic)
    total: int | None = None
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    quality_scores: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def record_success(self, quality_score: int) -> None:
        self.attempted += 1
        self.succeeded += 1
        self.quality_scores.append(quality_score)

    def record_failure(self, row_number: int, message: str) -> None:
        self.attempted += 1
        self.failed += 1
        if len(self.errors) < self.max_recorded_errors:
            self.errors.append(f"row {row_number}: {message}")

    @property
    def success_rate(self) -> float:
        processed = self.succeeded + self.failed
        return round(self.succeeded / processed * 100, 2) if processed else 0.0

    @property
    def quality_average(self) -> float:
        if not self.quality_scores:
            return 0.0
        return round(sum(self.quality_scores) / len(self.quality_scores), 2)

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_monotonic

    def progress(self) -> dict[str, Any]:
        percentage = round(self.attempted / self.total * 100, 1) if self.total else 0.0
        return {
            "mode": self.mode,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total": self.total,
            "percentage": percentage,
            "cancelRequested": self.token.cancelled,
            "startedAt": self.started_at.isoformat(),
            "elapsedSeconds": round(self.elapsed_seconds(), 1),
        }


class JobRegistry:
    """
    Process-local map of running jobs. Check-then-insert happens under one
    lock acquisition, so at most one job exists per dictionary id.
    """

    def __init__(self) -> None:
        self._jobs: dict[uuid.UUID, ProcessingJob] = {}
        self._lock = threading.Lock()

    def register(self, job: ProcessingJob) -> ProcessingJob:
        with self._lock:
            if job.dictionary_id in self._jobs:
                raise ConflictError(f"Dictionary is already being processed: {job.dictionary_id}")
            self._jobs[job.dictionary_id] = job
        return job

    def get(self, dictionary_id: uuid.UUID) -> ProcessingJob | None:
        with self._lock:
            return self._jobs.get(dictionary_id)

    def remove(self, job: ProcessingJob) -> None:
        with self._lock:
            if self._jobs.get(job.dictionary_id) is job:
                del self._jobs[job.dictionary_id]

    def active_ids(self) -> list[uuid.UUID]:
        with self._lock:
            return list(self._jobs)

    def __contains__(self, dictionary_id: object) -> bool:
        with self._lock:
            return dictionary_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


SqlViewExecutorFactory = Callable[[RemoteHandle], SqlViewExecutor]


class ProcessingCoordinator:
    """
    Starts, cancels and reprocesses dictionary generation jobs.
    """

    def __init__(
        self,
        *,
        store: DictionaryStore | None = None,
        registry: JobRegistry | None = None,
        credential_service: CredentialService | None = None,
        sql_view_executor_factory: SqlViewExecutorFactory | None = None,
        settings: ProcessingSettings | None = None,
        default_period: str | None = None,
    ) -> None:
        self._store = store or SQLAlchemyDictionaryStore()
        self._registry = registry or JobRegistry()
        self._credentials = credential_service or CredentialService(store=self._store)
        self._sql_view_executor_factory = sql_view_executor_factory or (
            lambda handle: SqlViewExecutor(handle=handle)
        )
        self._settings = settings or get_processing_settings()
        self._default_period = default_period or get_export_settings().default_period

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(
        self,
        dictionary_id: uuid.UUID,
        *,
        executor: ProcessingTaskExecutor,
        options: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        return self._launch(dictionary_id, mode=JobMode.START, executor=executor, options=options)

    def reprocess(
        self,
        dictionary_id: uuid.UUID,
        *,
        executor: ProcessingTaskExecutor,
        options: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        return self._launch(dictionary_id, mode=JobMode.REPROCESS, executor=executor, options=options)

    def cancel(self, dictionary_id: uuid.UUID) -> bool:
        job = self._registry.get(dictionary_id)
        if job is None:
            return False
        job.token.cancel()
        log_job_event(logger, logging.INFO, "job_cancel_requested", dictionary_id=dictionary_id)
        return True

    def is_processing(self, dictionary_id: uuid.UUID) -> bool:
        return dictionary_id in self._registry

    def list_active(self) -> list[uuid.UUID]:
        return self._registry.active_ids()

    def get_job(self, dictionary_id: uuid.UUID) -> ProcessingJob | None:
        return self._registry.get(dictionary_id)

    def process_all_pending(self, *, executor: ProcessingTaskExecutor) -> list[uuid.UUID]:
        """
        Start every dictionary left in ``generating`` without a live job.

        Dictionaries saved from a preview are skipped: their rows arrive with
        the save request, and they sit in ``generating`` between creation and
        ``process_rows``.
        """

        started: list[uuid.UUID] = []
        for dictionary in self._store.list_dictionaries_by_status(DictionaryStatus.GENERATING):
            if dictionary.processing_method == ProcessingMethod.PREVIEW:
                continue
            if self.is_processing(dictionary.id):
                continue
            try:
                self.start(dictionary.id, executor=executor)
            except ConflictError:
                continue
            started.append(dictionary.id)

        if started:
            logger.info("Pending dictionaries started count=%d", len(started))
        return started

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def _launch(
        self,
        dictionary_id: uuid.UUID,
        *,
        mode: str,
        executor: ProcessingTaskExecutor,
        options: dict[str, Any] | None,
    ) -> ProcessingJob:
        if self._store.get_dictionary(dictionary_id) is None:
            raise NotFoundError(f"Dictionary not found: {dictionary_id}")

        job = self._registry.register(
            ProcessingJob(
                dictionary_id=dictionary_id,
                mode=mode,
                options=ProcessingOptions.from_settings(self._settings, options),
                max_recorded_errors=self._settings.max_recorded_errors,
            )
        )
        try:
            executor.submit(self.run_job, job)
        except Exception:
            self._registry.remove(job)
            logger.exception("Failed to schedule dictionary job id=%s", dictionary_id)
            raise

        log_job_event(logger, logging.INFO, "job_accepted", dictionary_id=dictionary_id, mode=mode)
        return job

    def process_rows(
        self,
        dictionary: DictionaryRecord,
        rows: Sequence[Any],
        *,
        base_url: str,
    ) -> ProcessingJob:
        """
        Map and persist already-fetched rows synchronously, under the same
        one-job-per-dictionary guard as background jobs.
        """

        job = self._registry.register(
            ProcessingJob(
                dictionary_id=dictionary.id,
                mode=JobMode.SAVE_PREVIEW,
                options=ProcessingOptions.from_settings(self._settings),
                max_recorded_errors=self._settings.max_recorded_errors,
            )
        )
        job.total = len(rows)
        try:
            outcome = self._process_rows(job, dictionary, base_url, rows)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Saving preview rows failed id=%s", dictionary.id)
            outcome = self._outcome(job, status=DictionaryStatus.ERROR, message=f"{type(exc).__name__}: {exc}")
        try:
            self._finalize(job, outcome)
        finally:
            self._registry.remove(job)
        return job

    def run_job(self, job: ProcessingJob) -> None:
        """
        Body of a processing job. Always deregisters the job on exit.
        """

        try:
            outcome = self._execute(job)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Dictionary job failed id=%s", job.dictionary_id)
            outcome = self._outcome(
                job,
                status=DictionaryStatus.ERROR,
                message=f"{type(exc).__name__}: {getattr(exc, 'message', None) or exc}",
            )
        try:
            self._finalize(job, outcome)
        finally:
            self._registry.remove(job)

    def _execute(self, job: ProcessingJob) -> DictionaryOutcome:
        dictionary = self._store.get_dictionary(job.dictionary_id)
        if dictionary is None:
            raise NotFoundError(f"Dictionary not found: {job.dictionary_id}")

        self._store.mark_generating(job.dictionary_id, reset_stats=job.mode == JobMode.REPROCESS)
        log_job_event(
            logger,
            logging.INFO,
            "job_started",
            dictionary_id=job.dictionary_id,
            mode=job.mode,
            sql_view_id=dictionary.sql_view_id,
        )

        handle = self._credentials.resolve_handle(dictionary.instance_id)
        result = self._sql_view_executor_factory(handle).execute_all(
            dictionary.sql_view_id,
            page_size=job.options.page_size,
            use_cache=job.options.use_cache and job.mode != JobMode.REPROCESS,
            should_stop=job.token.is_cancelled,
        )
        job.total = len(result.rows)
        if result.cancelled:
            return self._cancelled_outcome(job)
        return self._process_rows(job, dictionary, handle.base_url, result.rows)

    def _process_rows(
        self,
        job: ProcessingJob,
        dictionary: DictionaryRecord,
        base_url: str,
        rows: Sequence[Any],
    ) -> DictionaryOutcome:
        for row_number, row in enumerate(rows, start=1):
            if job.token.cancelled:
                return self._cancelled_outcome(job)
            self._process_row(job, dictionary, base_url, row_number, row)
            if row_number % job.options.batch_size == 0:
                logger.info(
                    "Dictionary job progress id=%s processed=%d/%d failed=%d",
                    job.dictionary_id,
                    row_number,
                    job.total,
                    job.failed,
                )
            if job.options.delay_between_items_ms:
                time.sleep(job.options.delay_between_items_ms / 1000)

        if job.total == 0:
            return self._outcome(job, status=DictionaryStatus.ACTIVE, message=None)

        status = DictionaryStatus.ACTIVE if job.succeeded > 0 else DictionaryStatus.ERROR
        message = None
        if job.failed:
            message = f"{job.failed} rows failed: " + "; ".join(job.errors)
        return self._outcome(job, status=status, message=message)

    def _process_row(
        self,
        job: ProcessingJob,
        dictionary: DictionaryRecord,
        base_url: str,
        row_number: int,
        row: Any,
    ) -> None:
        row_started = time.monotonic()
        try:
            mapped = map_row(row)
            urls = derive_urls(
                mapped.identifier,
                dictionary.metadata_type,
                base_url,
                period=dictionary.period or self._default_period,
            )
            self._store.upsert_variable(
                VariableDraft(
                    dictionary_id=dictionary.id,
                    variable_uid=mapped.identifier,
                    variable_name=mapped.name,
                    variable_type=dictionary.metadata_type,
                    quality_score=mapped.quality_score,
                    status=VariableStatus.SUCCESS,
                    processing_time=int((time.monotonic() - row_started) * 1000),
                    metadata_json=mapped.payload,
                    analytics_api=urls.analytics,
                    metadata_api=urls.metadata,
                    data_values_api=urls.data_values,
                    export_api=urls.export,
                    web_ui_url=urls.web_ui,
                )
            )
        except DictionaryServiceError as exc:
            logger.warning(
                "Dictionary row failed id=%s row=%d code=%s error=%s",
                job.dictionary_id,
                row_number,
                exc.code,
                exc.message,
            )
            job.record_failure(row_number, exc.message)
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Dictionary row crashed id=%s row=%d", job.dictionary_id, row_number)
            job.record_failure(row_number, f"{type(exc).__name__}: {exc}")
            return

        job.record_success(mapped.quality_score)

    def _cancelled_outcome(self, job: ProcessingJob) -> DictionaryOutcome:
        total = job.total if job.total is not None else "unknown"
        log_job_event(
            logger,
            logging.INFO,
            "job_cancelled",
            dictionary_id=job.dictionary_id,
            attempted=job.attempted,
            total=total,
        )
        return self._outcome(
            job,
            status=DictionaryStatus.ERROR,
            message=f"Processing cancelled after {job.attempted} of {total} rows",
        )

    def _outcome(self, job: ProcessingJob, *, status: str, message: str | None) -> DictionaryOutcome:
        return DictionaryOutcome(
            status=status,
            variables_count=job.succeeded,
            quality_average=job.quality_average,
            success_rate=job.success_rate,
            processing_time=int(round(job.elapsed_seconds())),
            error_message=message[:_ERROR_MESSAGE_LIMIT] if message else None,
        )

    def _finalize(self, job: ProcessingJob, outcome: DictionaryOutcome) -> None:
        try:
            self._store.finalize_dictionary(job.dictionary_id, outcome)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to persist final dictionary state id=%s status=%s; stored state may be stale",
                job.dictionary_id,
                outcome.status,
            )
            return

        log_job_event(
            logger,
            logging.INFO,
            "job_finished",
            dictionary_id=job.dictionary_id,
            status=outcome.status,
            succeeded=job.succeeded,
            failed=job.failed,
            success_rate=outcome.success_rate,
            quality_average=outcome.quality_average,
            processing_time=outcome.processing_time,
        )


@lru_cache(maxsize=1)
def get_processing_coordinator() -> ProcessingCoordinator:
    return ProcessingCoordinator()
