"""
app/services/preview_service.py

Preview of a remote SQL view, conversion of the preview into a structured
table, and saving a converted preview as a new dictionary.

The router only handles HTTP plumbing; every rule about required fields,
column detection and scoring lives here.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from app.config import RemoteQuerySettings, get_remote_query_settings
from app.connectors.sql_view_connector import SqlViewExecutor
from app.domain.dictionary import DictionaryDraft
from app.domain.query_result import key_rows
from app.domain.remote import RemoteHandle
from app.errors import NotFoundError, ValidationError
from app.mappers.api_urls import normalize_api_base_url
from app.mappers.row_mapper import (
    column_metadata,
    detect_columns,
    structure_rows,
    weighted_quality_score,
)
from app.repositories.dictionary_store import DictionaryStore, SQLAlchemyDictionaryStore
from app.services.credential_service import CredentialService
from app.services.processing_coordinator import ProcessingCoordinator, get_processing_coordinator
from db.models.dictionary import DictionaryStatus, MetadataType, ProcessingMethod

logger = logging.getLogger(__name__)

DEFAULT_DICTIONARY_NAME = "Unnamed Dictionary"
EXPORT_FORMATS = ["json", "csv", "xml", "summary", "excel", "xlsx"]
_SAMPLE_SIZE = 5
_MAX_RETURNED_ERRORS = 10


def _require(fields: dict[str, Any]) -> None:
    missing = [name for name, value in fields.items() if value in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be a UUID.") from exc


class PreviewService:
    """
    Stateless service; collaborators are injected for tests.
    """

    def __init__(
        self,
        *,
        store: DictionaryStore | None = None,
        credential_service: CredentialService | None = None,
        coordinator: ProcessingCoordinator | None = None,
        sql_view_executor_factory: Callable[[RemoteHandle], SqlViewExecutor] | None = None,
        query_settings: RemoteQuerySettings | None = None,
    ) -> None:
        self._store = store or SQLAlchemyDictionaryStore()
        self._credentials = credential_service or CredentialService(store=self._store)
        self._coordinator = coordinator or get_processing_coordinator()
        self._sql_view_executor_factory = sql_view_executor_factory or (
            lambda handle: SqlViewExecutor(handle=handle)
        )
        self._settings = query_settings or get_remote_query_settings()

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(
        self,
        *,
        instance_id: Any,
        sql_view_id: str | None,
        metadata_type: str | None = None,
        group_id: str | None = None,
        dictionary_name: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """
        Execute one capped page of the SQL view and wrap it in a preview
        envelope. ``status`` is ``empty`` when the view returned no rows.

        Raises
        ------
        ValidationError
            If ``instance_id`` or ``sql_view_id`` is missing.
        NotFoundError
            If the instance is unknown.
        UpstreamError
            If the remote fails and no cached copy exists.
        """

        _require({"instance_id": instance_id, "sql_view_id": sql_view_id})
        handle = self._credentials.resolve_handle(_parse_uuid(instance_id, "instance_id"))
        started = time.monotonic()

        result = self._sql_view_executor_factory(handle).preview(
            sql_view_id,
            page_size_limit=min(limit or self._settings.preview_limit, self._settings.preview_limit),
        )
        now = datetime.now(timezone.utc)
        headers = result.headers or detect_columns(result.rows)

        logger.info(
            "SQL view preview instance=%s sql_view_id=%s rows=%d from_cache=%s stale=%s",
            handle.instance_name,
            sql_view_id,
            result.row_count,
            result.from_cache,
            result.stale,
        )
        return {
            "preview_id": f"preview_{int(now.timestamp() * 1000)}",
            "dictionary_name": dictionary_name or DEFAULT_DICTIONARY_NAME,
            "instance_id": str(instance_id),
            "instance_name": handle.instance_name,
            "metadata_type": metadata_type,
            "sql_view_id": sql_view_id,
            "group_id": group_id,
            "raw_data": result.rows,
            "headers": headers,
            "row_count": result.row_count,
            "preview_count": len(result.rows),
            "status": "ready" if result.rows else "empty",
            "from_cache": result.from_cache,
            "stale": result.stale,
            "execution_time": int((time.monotonic() - started) * 1000),
            "created_at": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Convert
    # ------------------------------------------------------------------

    def convert_table(
        self,
        *,
        raw_data: Any,
        headers: Sequence[str] | None = None,
        preview_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Project raw preview rows onto their columns and score the resulting
        table. Headers from the preview are authoritative; columns are only
        detected from the rows when none were supplied. Positional rows are
        keyed by header position.
        """

        if not isinstance(raw_data, list):
            raise ValidationError("raw_data must be an array of rows.")

        if headers:
            columns = [str(header) for header in headers]
            rows = key_rows(raw_data, columns)
        else:
            rows = raw_data
            columns = detect_columns(rows)
        structured = structure_rows(rows, columns)
        profiles = column_metadata(structured, columns)
        return {
            "preview_id": preview_id,
            "structured_data": structured,
            "detected_columns": columns,
            "column_metadata": {name: profile.to_dict() for name, profile in profiles.items()},
            "quality_score": weighted_quality_score(profiles),
            "total_rows": len(structured),
        }

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_from_preview(
        self,
        *,
        preview_id: str | None,
        dictionary_name: str | None,
        instance_id: Any,
        sql_view_id: str | None,
        structured_data: Any,
        metadata_type: str | None = None,
        group_id: str | None = None,
        detected_columns: Sequence[str] | None = None,
        column_profiles: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Create a dictionary from a converted preview and persist one variable
        per row. Rows without a UID are counted as failures.
        """

        _require(
            {
                "preview_id": preview_id,
                "dictionary_name": dictionary_name,
                "instance_id": instance_id,
                "sql_view_id": sql_view_id,
            }
        )
        if not isinstance(structured_data, list) or not structured_data:
            raise ValidationError("structured_data must be a non-empty array.")

        instance = self._store.get_instance(_parse_uuid(instance_id, "instance_id"))
        if instance is None:
            raise NotFoundError(f"Instance not found: {instance_id}")

        columns = list(detected_columns or detect_columns(structured_data))
        kind = metadata_type or MetadataType.DATA_ELEMENTS
        if kind not in MetadataType.ALL:
            raise ValidationError(f"Unsupported metadata_type: {kind}")
        today = datetime.now(timezone.utc).date()
        dictionary = self._store.create_dictionary(
            DictionaryDraft(
                name=dictionary_name,
                instance_id=instance.id,
                instance_name=instance.name,
                metadata_type=kind,
                sql_view_id=sql_view_id,
                group_id=group_id,
                processing_method=ProcessingMethod.PREVIEW,
                period=str(today.year),
                description=(
                    f"Generated from SQL view preview on {today.isoformat()}. "
                    f"Contains {len(structured_data)} {kind}."
                ),
                data={
                    "detected_columns": columns,
                    "column_metadata": column_profiles or {},
                    "preview_structure": {"preview_id": preview_id, "total_rows": len(structured_data)},
                },
            )
        )

        rows = [
            {column: row.get(column) for column in columns} if columns and isinstance(row, dict) else row
            for row in structured_data
        ]
        job = self._coordinator.process_rows(dictionary, rows, base_url=instance.base_url)
        sample = self._store.list_variables(dictionary.id)[:_SAMPLE_SIZE]

        logger.info(
            "Dictionary saved from preview id=%s rows=%d succeeded=%d failed=%d",
            dictionary.id,
            len(rows),
            job.succeeded,
            job.failed,
        )
        api_base = normalize_api_base_url(instance.base_url)
        return {
            "dictionary_id": str(dictionary.id),
            "dictionary_name": dictionary.name,
            "variables_count": job.succeeded,
            "failed_count": job.failed,
            "quality_score": job.quality_average,
            "success_rate": job.success_rate,
            "processing_time": round(job.elapsed_seconds(), 3),
            "status": "saved" if job.succeeded > 0 else DictionaryStatus.ERROR,
            "variables_sample": [
                {
                    "uid": variable.variable_uid,
                    "name": variable.variable_name,
                    "type": variable.variable_type,
                    "quality_score": variable.quality_score,
                    "analytics_api": variable.analytics_api,
                    "metadata_api": variable.metadata_api,
                    "web_ui_url": variable.web_ui_url,
                }
                for variable in sample
            ],
            "api_access": {
                "base_url": api_base,
                "export_formats": EXPORT_FORMATS,
                "bulk_download": f"/dictionaries/{dictionary.id}/export/combined",
            },
            "errors": job.errors[:_MAX_RETURNED_ERRORS],
        }


@lru_cache(maxsize=1)
def get_preview_service() -> PreviewService:
    return PreviewService()
