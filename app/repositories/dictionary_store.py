"""
app/repositories/dictionary_store.py

Session-per-call store used by the processing coordinator and the
preview/export services.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.domain.dictionary import (
    DictionaryDraft,
    DictionaryOutcome,
    DictionaryRecord,
    InstanceRecord,
    VariableDraft,
    VariableRecord,
)
from app.errors import PersistenceError
from db.models.dictionary import MetadataDictionary
from db.models.dictionary_variable import DictionaryVariable
from db.models.remote_instance import RemoteInstance
from db.repositories.dictionary_repository import DictionaryRepository


class DictionaryStore(Protocol):
    def get_dictionary(self, dictionary_id: uuid.UUID) -> DictionaryRecord | None:
        ...

    def list_dictionaries_by_status(self, status: str) -> list[DictionaryRecord]:
        ...

    def create_dictionary(self, draft: DictionaryDraft) -> DictionaryRecord:
        ...

    def mark_generating(self, dictionary_id: uuid.UUID, *, reset_stats: bool = False) -> None:
        ...

    def finalize_dictionary(self, dictionary_id: uuid.UUID, outcome: DictionaryOutcome) -> None:
        ...

    def upsert_variable(self, draft: VariableDraft) -> VariableRecord:
        ...

    def list_variables(
        self,
        dictionary_id: uuid.UUID,
        variable_uids: Sequence[str] | None = None,
    ) -> list[VariableRecord]:
        ...

    def get_instance(self, instance_id: uuid.UUID) -> InstanceRecord | None:
        ...


class SQLAlchemyDictionaryStore:
    """
    ``DictionaryStore`` backed by PostgreSQL. Each call opens its own
    session and commits; SQLAlchemy failures surface as ``PersistenceError``.
    """

    def __init__(self, *, session_factory: sessionmaker[Session] | None = None) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

    def get_dictionary(self, dictionary_id: uuid.UUID) -> DictionaryRecord | None:
        try:
            with self._session_factory() as session:
                row = DictionaryRepository(session).get_dictionary(dictionary_id)
                return _to_dictionary_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load dictionary {dictionary_id}.") from exc

    def list_dictionaries_by_status(self, status: str) -> list[DictionaryRecord]:
        try:
            with self._session_factory() as session:
                rows = DictionaryRepository(session).list_dictionaries(status=status, limit=500)
                return [_to_dictionary_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list dictionaries with status {status}.") from exc

    def create_dictionary(self, draft: DictionaryDraft) -> DictionaryRecord:
        try:
            with self._session_factory() as session:
                with session.begin():
                    row = DictionaryRepository(session).create_dictionary(
                        name=draft.name,
                        description=draft.description,
                        instance_id=draft.instance_id,
                        instance_name=draft.instance_name,
                        metadata_type=draft.metadata_type,
                        sql_view_id=draft.sql_view_id,
                        group_id=draft.group_id,
                        processing_method=draft.processing_method,
                        period=draft.period,
                        version=draft.version,
                        data=draft.data,
                    )
                return _to_dictionary_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to create dictionary.") from exc

    def mark_generating(self, dictionary_id: uuid.UUID, *, reset_stats: bool = False) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    DictionaryRepository(session).mark_generating(
                        dictionary_id=dictionary_id,
                        reset_stats=reset_stats,
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to reset dictionary {dictionary_id}.") from exc

    def finalize_dictionary(self, dictionary_id: uuid.UUID, outcome: DictionaryOutcome) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    updated = DictionaryRepository(session).mark_finished(
                        dictionary_id=dictionary_id,
                        status=outcome.status,
                        variables_count=outcome.variables_count,
                        quality_average=outcome.quality_average,
                        success_rate=outcome.success_rate,
                        processing_time=outcome.processing_time,
                        error_message=outcome.error_message,
                    )
                    if updated is None:
                        raise PersistenceError(f"Dictionary disappeared before finalization: {dictionary_id}")
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to finalize dictionary {dictionary_id}.") from exc

    def upsert_variable(self, draft: VariableDraft) -> VariableRecord:
        try:
            with self._session_factory() as session:
                with session.begin():
                    row = DictionaryRepository(session).upsert_variable(
                        dictionary_id=draft.dictionary_id,
                        variable_uid=draft.variable_uid,
                        variable_name=draft.variable_name,
                        variable_type=draft.variable_type,
                        quality_score=draft.quality_score,
                        processing_time=draft.processing_time,
                        status=draft.status,
                        error_message=draft.error_message,
                        metadata_json=draft.metadata_json,
                        analytics_api=draft.analytics_api,
                        metadata_api=draft.metadata_api,
                        data_values_api=draft.data_values_api,
                        export_api=draft.export_api,
                        web_ui_url=draft.web_ui_url,
                    )
                    record = _to_variable_record(row)
                return record
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to upsert variable {draft.variable_uid}.") from exc

    def list_variables(
        self,
        dictionary_id: uuid.UUID,
        variable_uids: Sequence[str] | None = None,
    ) -> list[VariableRecord]:
        try:
            with self._session_factory() as session:
                rows = DictionaryRepository(session).list_variables(
                    dictionary_id=dictionary_id,
                    variable_uids=variable_uids,
                )
                return [_to_variable_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list variables of dictionary {dictionary_id}.") from exc

    def get_instance(self, instance_id: uuid.UUID) -> InstanceRecord | None:
        try:
            with self._session_factory() as session:
                row = DictionaryRepository(session).get_instance(instance_id)
                return _to_instance_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load instance {instance_id}.") from exc


def _to_dictionary_record(row: MetadataDictionary) -> DictionaryRecord:
    return DictionaryRecord(
        id=row.id,
        name=row.name,
        description=row.description,
        instance_id=row.instance_id,
        instance_name=row.instance_name,
        metadata_type=row.metadata_type,
        sql_view_id=row.sql_view_id,
        group_id=row.group_id,
        processing_method=row.processing_method,
        period=row.period,
        version=row.version,
        status=row.status,
        variables_count=row.variables_count or 0,
        quality_average=float(row.quality_average or 0),
        success_rate=float(row.success_rate or 0),
        processing_time=row.processing_time,
        error_message=row.error_message,
        data=row.data,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_variable_record(row: DictionaryVariable) -> VariableRecord:
    return VariableRecord(
        id=row.id,
        dictionary_id=row.dictionary_id,
        variable_uid=row.variable_uid,
        variable_name=row.variable_name,
        variable_type=row.variable_type,
        quality_score=row.quality_score,
        status=row.status,
        processing_time=row.processing_time,
        error_message=row.error_message,
        metadata_json=row.metadata_json or {},
        analytics_api=row.analytics_api,
        metadata_api=row.metadata_api,
        data_values_api=row.data_values_api,
        export_api=row.export_api,
        web_ui_url=row.web_ui_url,
        created_at=row.created_at,
    )


def _to_instance_record(row: RemoteInstance) -> InstanceRecord:
    return InstanceRecord(
        id=row.id,
        name=row.name,
        base_url=row.base_url,
        username=row.username,
        password_encrypted=row.password_encrypted,
        status=row.status,
    )
