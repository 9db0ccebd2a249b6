"""
db/repositories/dictionary_repository.py

Persistence layer for metadata dictionaries, their variables, and the
instances they were generated from.

All methods are transaction-safe. The caller controls commit/rollback;
this repository never commits on its own.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from db.models.dictionary import DictionaryStatus, MetadataDictionary
from db.models.dictionary_variable import VARIABLE_UPSERT_CONSTRAINT, DictionaryVariable
from db.models.remote_instance import RemoteInstance

_UPDATABLE_VARIABLE_FIELDS = (
    "variable_name",
    "variable_type",
    "quality_score",
    "processing_time",
    "status",
    "error_message",
    "metadata_json",
    "analytics_api",
    "metadata_api",
    "data_values_api",
    "export_api",
    "web_ui_url",
)


class DictionaryRepository:
    """
    Repository for reading and writing dictionary rows.

    Upsert semantics: writing a variable whose ``(dictionary_id,
    variable_uid)`` already exists overwrites it in place.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Dictionaries
    # ------------------------------------------------------------------

    def get_dictionary(self, dictionary_id: uuid.UUID) -> MetadataDictionary | None:
        return self._session.get(MetadataDictionary, dictionary_id)

    def list_dictionaries(
        self,
        *,
        status: str | None = None,
        limit: int = 100,
    ) -> list[MetadataDictionary]:
        stmt: Select[tuple[MetadataDictionary]] = select(MetadataDictionary)
        if status:
            stmt = stmt.where(MetadataDictionary.status == status)
        stmt = stmt.order_by(MetadataDictionary.created_at.asc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def create_dictionary(self, **fields: Any) -> MetadataDictionary:
        dictionary = MetadataDictionary(status=DictionaryStatus.GENERATING, **fields)
        self._session.add(dictionary)
        self._session.flush()
        self._session.refresh(dictionary)
        return dictionary

    def mark_generating(
        self,
        *,
        dictionary_id: uuid.UUID,
        reset_stats: bool = False,
    ) -> MetadataDictionary | None:
        dictionary = self.get_dictionary(dictionary_id)
        if dictionary is None:
            return None
        dictionary.status = DictionaryStatus.GENERATING
        dictionary.error_message = None
        if reset_stats:
            dictionary.variables_count = 0
            dictionary.quality_average = 0
            dictionary.success_rate = 0
            dictionary.processing_time = None
        return dictionary

    def mark_finished(
        self,
        *,
        dictionary_id: uuid.UUID,
        status: str,
        variables_count: int,
        quality_average: float,
        success_rate: float,
        processing_time: int,
        error_message: str | None = None,
    ) -> MetadataDictionary | None:
        """
        Write the final statistics of a processing job.

        Parameters
        ----------
        dictionary_id:
            Dictionary being finalized.
        status:
            ``active`` or ``error``.
        variables_count, quality_average, success_rate, processing_time:
            Recomputed totals for the job, never increments.
        error_message:
            Failure or cancellation summary, if any.

        Returns
        -------
        MetadataDictionary | None
            The updated instance (not yet committed), or None if absent.
        """
        dictionary = self.get_dictionary(dictionary_id)
        if dictionary is None:
            return None
        dictionary.status = status
        dictionary.variables_count = variables_count
        dictionary.quality_average = round(quality_average, 2)
        dictionary.success_rate = round(success_rate, 2)
        dictionary.processing_time = processing_time
        dictionary.error_message = error_message
        return dictionary

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def upsert_variable(
        self,
        *,
        dictionary_id: uuid.UUID,
        variable_uid: str,
        **fields: Any,
    ) -> DictionaryVariable:
        """
        Insert a variable or overwrite the existing row for the same UID.
        """
        values = {"id": uuid.uuid4(), "dictionary_id": dictionary_id, "variable_uid": variable_uid, **fields}
        stmt = (
            insert(DictionaryVariable)
            .values(**values)
            .on_conflict_do_update(
                constraint=VARIABLE_UPSERT_CONSTRAINT,
                set_={name: values[name] for name in _UPDATABLE_VARIABLE_FIELDS if name in values},
            )
            .returning(DictionaryVariable)
        )
        row: DictionaryVariable = self._session.scalars(stmt).one()
        return row

    def list_variables(
        self,
        *,
        dictionary_id: uuid.UUID,
        variable_uids: Sequence[str] | None = None,
    ) -> list[DictionaryVariable]:
        stmt: Select[tuple[DictionaryVariable]] = select(DictionaryVariable).where(
            DictionaryVariable.dictionary_id == dictionary_id
        )
        if variable_uids:
            stmt = stmt.where(DictionaryVariable.variable_uid.in_(list(variable_uids)))
        stmt = stmt.order_by(DictionaryVariable.created_at.asc(), DictionaryVariable.variable_uid.asc())
        return list(self._session.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: uuid.UUID) -> RemoteInstance | None:
        return self._session.get(RemoteInstance, instance_id)
