"""
tests/test_processing_coordinator.py

Pytest unit tests for ProcessingCoordinator and its job registry.

Everything runs against in-memory fakes from conftest: no database, no
remote instance, no threads unless a test starts one explicitly.

Coverage
--------
- One job per dictionary; a second start is a conflict
- Full run writes variables and final statistics
- Row failures are counted, never abort the loop
- Cancellation mid-run keeps already-written variables
- Reprocess bypasses the query cache and is idempotent
- Empty sources finish active; all-failed sources finish in error
- Pending pickup and synchronous row processing
"""

from __future__ import annotations

import threading
import uuid

import pytest

from app.config import ProcessingSettings
from app.errors import ConflictError, NotFoundError
from app.services.processing_coordinator import (
    CancellationToken,
    JobMode,
    JobRegistry,
    ProcessingCoordinator,
    ProcessingJob,
    ProcessingOptions,
)
from db.models.dictionary import DictionaryStatus, ProcessingMethod
from tests.conftest import (
    DeferredExecutor,
    InlineExecutor,
    InMemoryDictionaryStore,
    ScriptedSqlViewExecutor,
    anc_rows,
    uid,
)


@pytest.fixture()
def dictionary(store: InMemoryDictionaryStore, instance):
    return store.add_dictionary(instance_id=instance.id)


# ---------------------------------------------------------------------------
# Registry and job state
# ---------------------------------------------------------------------------


class TestJobRegistry:
    def test_second_register_conflicts(self) -> None:
        registry = JobRegistry()
        dictionary_id = uuid.uuid4()
        registry.register(ProcessingJob(dictionary_id=dictionary_id, mode=JobMode.START, options=ProcessingOptions()))
        with pytest.raises(ConflictError):
            registry.register(
                ProcessingJob(dictionary_id=dictionary_id, mode=JobMode.START, options=ProcessingOptions())
            )
        assert len(registry) == 1

    def test_concurrent_registration_admits_one(self) -> None:
        registry = JobRegistry()
        dictionary_id = uuid.uuid4()
        barrier = threading.Barrier(8)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                registry.register(
                    ProcessingJob(dictionary_id=dictionary_id, mode=JobMode.START, options=ProcessingOptions())
                )
                result = "ok"
            except ConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7

    def test_remove_only_drops_the_same_job(self) -> None:
        registry = JobRegistry()
        dictionary_id = uuid.uuid4()
        stale = ProcessingJob(dictionary_id=dictionary_id, mode=JobMode.START, options=ProcessingOptions())
        registry.register(stale)
        registry.remove(stale)
        current = ProcessingJob(dictionary_id=dictionary_id, mode=JobMode.START, options=ProcessingOptions())
        registry.register(current)
        registry.remove(stale)
        assert dictionary_id in registry


class TestProcessingJob:
    def test_rates_with_no_rows(self) -> None:
        job = ProcessingJob(dictionary_id=uuid.uuid4(), mode=JobMode.START, options=ProcessingOptions())
        assert job.success_rate == 0.0
        assert job.quality_average == 0.0
        assert job.progress()["percentage"] == 0.0

    def test_recorded_errors_are_capped(self) -> None:
        job = ProcessingJob(
            dictionary_id=uuid.uuid4(),
            mode=JobMode.START,
            options=ProcessingOptions(),
            max_recorded_errors=2,
        )
        for row_number in range(1, 6):
            job.record_failure(row_number, "bad")
        assert job.failed == 5
        assert job.errors == ["row 1: bad", "row 2: bad"]

    def test_rates_stay_in_bounds(self) -> None:
        job = ProcessingJob(dictionary_id=uuid.uuid4(), mode=JobMode.START, options=ProcessingOptions())
        job.record_success(100)
        job.record_success(50)
        job.record_failure(3, "bad")
        assert 0 <= job.success_rate <= 100
        assert job.success_rate == 66.67
        assert job.quality_average == 75.0

    def test_cancellation_token(self) -> None:
        token = CancellationToken()
        assert token.is_cancelled() is False
        token.cancel()
        assert token.cancelled is True

    def test_options_from_overrides(self) -> None:
        options = ProcessingOptions.from_settings(
            ProcessingSettings(batch_size=50),
            {"batch_size": 0, "page_size": 200, "use_cache": False},
        )
        assert options.batch_size == 50
        assert options.page_size == 200
        assert options.use_cache is False


# ---------------------------------------------------------------------------
# Start / run
# ---------------------------------------------------------------------------


class TestStart:
    def test_second_start_while_running_conflicts(
        self,
        coordinator: ProcessingCoordinator,
        dictionary,
        deferred_executor: DeferredExecutor,
    ) -> None:
        coordinator.start(dictionary.id, executor=deferred_executor)
        with pytest.raises(ConflictError):
            coordinator.start(dictionary.id, executor=deferred_executor)
        assert coordinator.is_processing(dictionary.id)
        assert coordinator.list_active() == [dictionary.id]

    def test_unknown_dictionary(self, coordinator: ProcessingCoordinator, deferred_executor: DeferredExecutor) -> None:
        with pytest.raises(NotFoundError):
            coordinator.start(uuid.uuid4(), executor=deferred_executor)

    def test_full_run(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(7)
        coordinator.start(dictionary.id, executor=inline_executor)

        final = store.get_dictionary(dictionary.id)
        assert final.status == DictionaryStatus.ACTIVE
        assert final.variables_count == 7
        assert final.success_rate == 100.0
        assert final.quality_average == 100.0
        assert final.error_message is None
        assert len(store.list_variables(dictionary.id)) == 7
        assert not coordinator.is_processing(dictionary.id)

    def test_variable_urls_are_derived(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(1)
        coordinator.start(dictionary.id, executor=inline_executor)

        variable = store.list_variables(dictionary.id)[0]
        assert variable.variable_uid == uid(1)
        assert variable.variable_name == "ANC visit 1"
        assert variable.analytics_api.startswith("https://play.example.org/api/analytics?")
        assert variable.data_values_api is not None
        assert variable.web_ui_url.endswith(f"/dataElement/{uid(1)}")

    def test_bad_rows_are_counted(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(3) + [{"foo": "bar"}]
        coordinator.start(dictionary.id, executor=inline_executor)

        final = store.get_dictionary(dictionary.id)
        assert final.status == DictionaryStatus.ACTIVE
        assert final.variables_count == 3
        assert final.success_rate == 75.0
        assert final.error_message.startswith("1 rows failed: row 4: No valid UID found")

    def test_store_failure_is_a_row_failure(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(4)
        store.fail_uids = {uid(2)}
        coordinator.start(dictionary.id, executor=inline_executor)

        final = store.get_dictionary(dictionary.id)
        assert final.variables_count == 3
        assert len(store.list_variables(dictionary.id)) == 3

    def test_all_rows_failing_ends_in_error(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = [{"foo": "bar"}, "not a row"]
        coordinator.start(dictionary.id, executor=inline_executor)

        final = store.get_dictionary(dictionary.id)
        assert final.status == DictionaryStatus.ERROR
        assert final.success_rate == 0.0

    def test_empty_source_ends_active(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        coordinator.start(dictionary.id, executor=inline_executor)
        final = store.get_dictionary(dictionary.id)
        assert final.status == DictionaryStatus.ACTIVE
        assert final.variables_count == 0

    def test_missing_instance_ends_in_error(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        inline_executor: InlineExecutor,
    ) -> None:
        orphan = store.add_dictionary()
        coordinator.start(orphan.id, executor=inline_executor)

        final = store.get_dictionary(orphan.id)
        assert final.status == DictionaryStatus.ERROR
        assert "Instance not found" in final.error_message
        assert not coordinator.is_processing(orphan.id)

    def test_failed_final_write_still_releases_job(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(2)
        store.fail_finalize = True
        coordinator.start(dictionary.id, executor=inline_executor)
        assert not coordinator.is_processing(dictionary.id)
        assert store.outcomes == []

    def test_executor_failure_releases_registration(
        self,
        coordinator: ProcessingCoordinator,
        dictionary,
    ) -> None:
        class BrokenExecutor:
            def submit(self, task, *args, **kwargs) -> None:
                raise RuntimeError("pool closed")

        with pytest.raises(RuntimeError):
            coordinator.start(dictionary.id, executor=BrokenExecutor())
        assert not coordinator.is_processing(dictionary.id)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    def test_cancel_after_three_rows(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(10)
        written: list[str] = []

        def cancel_after_third(record) -> None:
            written.append(record.variable_uid)
            if len(written) == 3:
                assert coordinator.cancel(dictionary.id) is True

        store.on_upsert = cancel_after_third
        coordinator.start(dictionary.id, executor=inline_executor)

        final = store.get_dictionary(dictionary.id)
        assert len(store.list_variables(dictionary.id)) == 3
        assert final.status == DictionaryStatus.ERROR
        assert final.error_message == "Processing cancelled after 3 of 10 rows"
        assert final.variables_count == 3
        assert not coordinator.is_processing(dictionary.id)

    def test_cancel_before_fetch(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        deferred_executor: DeferredExecutor,
    ) -> None:
        sql_views.rows = anc_rows(5)
        coordinator.start(dictionary.id, executor=deferred_executor)
        assert coordinator.cancel(dictionary.id) is True
        deferred_executor.run_all()

        final = store.get_dictionary(dictionary.id)
        assert final.status == DictionaryStatus.ERROR
        assert final.error_message.startswith("Processing cancelled after 0 of")
        assert store.list_variables(dictionary.id) == []

    def test_cancel_unknown_job(self, coordinator: ProcessingCoordinator) -> None:
        assert coordinator.cancel(uuid.uuid4()) is False


# ---------------------------------------------------------------------------
# Reprocess
# ---------------------------------------------------------------------------


class TestReprocess:
    def test_reprocess_bypasses_cache(
        self,
        coordinator: ProcessingCoordinator,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        coordinator.start(dictionary.id, executor=inline_executor)
        coordinator.reprocess(dictionary.id, executor=inline_executor)
        assert [call["use_cache"] for call in sql_views.calls] == [True, False]

    def test_reprocess_is_idempotent(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        sql_views: ScriptedSqlViewExecutor,
        dictionary,
        inline_executor: InlineExecutor,
    ) -> None:
        sql_views.rows = anc_rows(6)
        coordinator.reprocess(dictionary.id, executor=inline_executor)
        first = store.get_dictionary(dictionary.id)
        first_ids = {record.variable_uid: record.id for record in store.list_variables(dictionary.id)}

        coordinator.reprocess(dictionary.id, executor=inline_executor)
        second = store.get_dictionary(dictionary.id)
        second_ids = {record.variable_uid: record.id for record in store.list_variables(dictionary.id)}

        assert second_ids == first_ids
        assert (second.variables_count, second.quality_average, second.success_rate) == (
            first.variables_count,
            first.quality_average,
            first.success_rate,
        )


# ---------------------------------------------------------------------------
# Pending pickup and synchronous processing
# ---------------------------------------------------------------------------


class TestPendingAndRows:
    def test_process_all_pending_skips_running(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        instance,
        deferred_executor: DeferredExecutor,
    ) -> None:
        running = store.add_dictionary(instance_id=instance.id)
        waiting = store.add_dictionary(instance_id=instance.id)
        store.add_dictionary(instance_id=instance.id, status=DictionaryStatus.ACTIVE)
        coordinator.start(running.id, executor=deferred_executor)

        started = coordinator.process_all_pending(executor=deferred_executor)
        assert started == [waiting.id]

    def test_process_all_pending_leaves_preview_saves_alone(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        instance,
        deferred_executor: DeferredExecutor,
    ) -> None:
        saving = store.add_dictionary(instance_id=instance.id, processing_method=ProcessingMethod.PREVIEW)

        assert coordinator.process_all_pending(executor=deferred_executor) == []
        assert deferred_executor.tasks == []

        job = coordinator.process_rows(saving, anc_rows(2), base_url="https://play.example.org")
        assert job.succeeded == 2
        assert store.get_dictionary(saving.id).status == DictionaryStatus.ACTIVE

    def test_process_rows_is_synchronous(
        self,
        coordinator: ProcessingCoordinator,
        store: InMemoryDictionaryStore,
        dictionary,
    ) -> None:
        job = coordinator.process_rows(dictionary, anc_rows(4) + [{"foo": "bar"}], base_url="https://play.example.org")

        assert job.mode == JobMode.SAVE_PREVIEW
        assert (job.total, job.succeeded, job.failed) == (5, 4, 1)
        assert len(store.list_variables(dictionary.id)) == 4
        assert store.get_dictionary(dictionary.id).status == DictionaryStatus.ACTIVE
        assert not coordinator.is_processing(dictionary.id)

    def test_process_rows_conflicts_with_running_job(
        self,
        coordinator: ProcessingCoordinator,
        dictionary,
        deferred_executor: DeferredExecutor,
    ) -> None:
        coordinator.start(dictionary.id, executor=deferred_executor)
        with pytest.raises(ConflictError):
            coordinator.process_rows(dictionary, anc_rows(1), base_url="https://play.example.org")
