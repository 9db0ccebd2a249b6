"""
tests/conftest.py

Shared in-memory fakes. Nothing here touches a database or the network.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import pytest

from app.config import ProcessingSettings
from app.connectors.sql_view_connector import QueryPreview, QueryResult
from app.domain.dictionary import (
    DictionaryDraft,
    DictionaryOutcome,
    DictionaryRecord,
    InstanceRecord,
    VariableDraft,
    VariableRecord,
)
from app.domain.remote import RemoteHandle
from app.errors import NotFoundError, PersistenceError, UpstreamError
from app.mappers.api_urls import derive_urls
from app.services.processing_coordinator import JobRegistry, ProcessingCoordinator
from db.models.dictionary import DictionaryStatus

BASE_URL = "https://play.example.org"


class InMemoryDictionaryStore:
    """
    ``DictionaryStore`` over plain dicts. ``on_upsert`` runs after every
    successful variable write; ``fail_uids`` makes writes for those UIDs fail.
    """

    def __init__(self) -> None:
        self.dictionaries: dict[uuid.UUID, DictionaryRecord] = {}
        self.variables: dict[tuple[uuid.UUID, str], VariableRecord] = {}
        self.instances: dict[uuid.UUID, InstanceRecord] = {}
        self.outcomes: list[tuple[uuid.UUID, DictionaryOutcome]] = []
        self.fail_uids: set[str] = set()
        self.fail_finalize = False
        self.on_upsert: Callable[[VariableRecord], None] | None = None

    def add_instance(self, *, name: str = "Play", base_url: str = BASE_URL) -> InstanceRecord:
        instance = InstanceRecord(
            id=uuid.uuid4(),
            name=name,
            base_url=base_url,
            username="admin",
            password_encrypted="token",
        )
        self.instances[instance.id] = instance
        return instance

    def add_dictionary(self, **overrides: Any) -> DictionaryRecord:
        fields: dict[str, Any] = {
            "id": uuid.uuid4(),
            "name": "ANC dictionary",
            "instance_id": uuid.uuid4(),
            "instance_name": "Play",
            "metadata_type": "dataElements",
            "sql_view_id": "sqlView0001",
            "status": DictionaryStatus.GENERATING,
        }
        fields.update(overrides)
        record = DictionaryRecord(**fields)
        self.dictionaries[record.id] = record
        return record

    def get_dictionary(self, dictionary_id: uuid.UUID) -> DictionaryRecord | None:
        return self.dictionaries.get(dictionary_id)

    def list_dictionaries_by_status(self, status: str) -> list[DictionaryRecord]:
        return [record for record in self.dictionaries.values() if record.status == status]

    def create_dictionary(self, draft: DictionaryDraft) -> DictionaryRecord:
        record = DictionaryRecord(
            id=uuid.uuid4(),
            status=DictionaryStatus.GENERATING,
            **{name: getattr(draft, name) for name in draft.__dataclass_fields__},
        )
        self.dictionaries[record.id] = record
        return record

    def mark_generating(self, dictionary_id: uuid.UUID, *, reset_stats: bool = False) -> None:
        record = self.dictionaries[dictionary_id]
        changes: dict[str, Any] = {"status": DictionaryStatus.GENERATING, "error_message": None}
        if reset_stats:
            changes.update(variables_count=0, quality_average=0.0, success_rate=0.0, processing_time=None)
        self.dictionaries[dictionary_id] = replace(record, **changes)

    def finalize_dictionary(self, dictionary_id: uuid.UUID, outcome: DictionaryOutcome) -> None:
        if self.fail_finalize:
            raise PersistenceError("database went away")
        self.outcomes.append((dictionary_id, outcome))
        self.dictionaries[dictionary_id] = replace(
            self.dictionaries[dictionary_id],
            status=outcome.status,
            variables_count=outcome.variables_count,
            quality_average=outcome.quality_average,
            success_rate=outcome.success_rate,
            processing_time=outcome.processing_time,
            error_message=outcome.error_message,
        )

    def upsert_variable(self, draft: VariableDraft) -> VariableRecord:
        if draft.variable_uid in self.fail_uids:
            raise PersistenceError(f"Failed to upsert variable {draft.variable_uid}.")
        key = (draft.dictionary_id, draft.variable_uid)
        existing = self.variables.get(key)
        record = VariableRecord(
            id=existing.id if existing else uuid.uuid4(),
            created_at=existing.created_at if existing else datetime.now(timezone.utc),
            **{name: getattr(draft, name) for name in draft.__dataclass_fields__},
        )
        self.variables[key] = record
        if self.on_upsert is not None:
            self.on_upsert(record)
        return record

    def list_variables(
        self,
        dictionary_id: uuid.UUID,
        variable_uids: Sequence[str] | None = None,
    ) -> list[VariableRecord]:
        return [
            record
            for (owner, uid), record in self.variables.items()
            if owner == dictionary_id and (not variable_uids or uid in variable_uids)
        ]

    def get_instance(self, instance_id: uuid.UUID) -> InstanceRecord | None:
        return self.instances.get(instance_id)


class StaticCredentialService:
    """
    Resolves every known instance to a handle without decrypting anything.
    """

    def __init__(self, store: InMemoryDictionaryStore) -> None:
        self._store = store

    def resolve_handle(self, instance_id: uuid.UUID) -> RemoteHandle:
        instance = self._store.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance not found: {instance_id}")
        return RemoteHandle.from_basic_auth(
            base_url=instance.base_url,
            username=instance.username,
            password="district",
            instance_id=str(instance.id),
            instance_name=instance.name,
        )


class ScriptedSqlViewExecutor:
    """
    Returns canned rows for every SQL view and records each call.
    """

    def __init__(self, rows: list[Any] | None = None, headers: list[str] | None = None) -> None:
        self.rows = rows or []
        self.headers = headers or []
        self.calls: list[dict[str, Any]] = []

    def __call__(self, handle: RemoteHandle) -> ScriptedSqlViewExecutor:
        return self

    def execute_all(self, sql_view_id: str, **kwargs: Any) -> QueryResult:
        self.calls.append({"sql_view_id": sql_view_id, **kwargs})
        should_stop = kwargs.get("should_stop")
        if should_stop is not None and should_stop():
            return QueryResult(rows=[], headers=self.headers, pages=0, elapsed_ms=0, cancelled=True)
        return QueryResult(rows=list(self.rows), headers=self.headers, pages=1, elapsed_ms=1)

    def preview(self, sql_view_id: str, **kwargs: Any) -> QueryPreview:
        self.calls.append({"sql_view_id": sql_view_id, **kwargs})
        limit = kwargs.get("page_size_limit") or len(self.rows)
        rows = list(self.rows[:limit])
        return QueryPreview(rows=rows, headers=self.headers, row_count=len(rows), elapsed_ms=1)


class InlineExecutor:
    """Runs submitted tasks immediately on the calling thread."""

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)


class DeferredExecutor:
    """Holds submitted tasks until ``run_all`` is called."""

    def __init__(self) -> None:
        self.tasks: list[tuple[Callable[..., None], tuple[Any, ...], dict[str, Any]]] = []

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self.tasks.append((task, args, kwargs))

    def run_all(self) -> None:
        tasks, self.tasks = self.tasks, []
        for task, args, kwargs in tasks:
            task(*args, **kwargs)


class FakeAnalyticsConnector:
    """Analytics and metadata reads with one data point per variable."""

    def __init__(self, value: str = "42", fail: bool = False) -> None:
        self.value = value
        self.fail = fail
        self.analytics_calls: list[str] = []
        self.metadata_calls: list[str] = []

    def __call__(self, handle: RemoteHandle) -> FakeAnalyticsConnector:
        return self

    def fetch_analytics(self, uid: str, metadata_type: str, *, period: str, org_unit: str) -> dict:
        self.analytics_calls.append(uid)
        if self.fail:
            raise UpstreamError("analytics: remote returned HTTP 500.", upstream_status=500)
        return {"headers": [], "rows": [[uid, period, org_unit, self.value]]}

    def fetch_metadata(self, uid: str, metadata_type: str) -> dict:
        self.metadata_calls.append(uid)
        return {"id": uid, "description": f"Description of {uid}"}


def seed_variable(
    store: InMemoryDictionaryStore,
    dictionary_id: uuid.UUID,
    index: int,
    quality: int = 80,
) -> VariableRecord:
    variable_uid = uid(index)
    urls = derive_urls(variable_uid, "dataElements", BASE_URL)
    return store.upsert_variable(
        VariableDraft(
            dictionary_id=dictionary_id,
            variable_uid=variable_uid,
            variable_name=f"Variable {index}",
            variable_type="dataElements",
            quality_score=quality,
            metadata_json={"uid": variable_uid, "name": f"Variable {index}"},
            analytics_api=urls.analytics,
            metadata_api=urls.metadata,
            data_values_api=urls.data_values,
            export_api=urls.export,
            web_ui_url=urls.web_ui,
        )
    )


def uid(index: int) -> str:
    """Deterministic 11-character UID, e.g. ``fbfJHSPpUQ3`` style."""
    return f"deUid{index:06d}"


def anc_rows(count: int) -> list[dict[str, Any]]:
    return [
        {"data_element_id": uid(index), "name": f"ANC visit {index}", "code": f"ANC_{index}"}
        for index in range(1, count + 1)
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> InMemoryDictionaryStore:
    return InMemoryDictionaryStore()


@pytest.fixture()
def instance(store: InMemoryDictionaryStore) -> InstanceRecord:
    return store.add_instance()


@pytest.fixture()
def sql_views() -> ScriptedSqlViewExecutor:
    return ScriptedSqlViewExecutor()


@pytest.fixture()
def coordinator(store: InMemoryDictionaryStore, sql_views: ScriptedSqlViewExecutor) -> ProcessingCoordinator:
    return ProcessingCoordinator(
        store=store,
        registry=JobRegistry(),
        credential_service=StaticCredentialService(store),
        sql_view_executor_factory=sql_views,
        settings=ProcessingSettings(batch_size=5),
        default_period="THIS_YEAR",
    )


@pytest.fixture()
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture()
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()
