"""
app/domain/dictionary.py

Plain records exchanged between services and the dictionary store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class DictionaryRecord:
    id: uuid.UUID
    name: str
    instance_id: uuid.UUID
    instance_name: str
    metadata_type: str
    sql_view_id: str
    status: str
    description: str | None = None
    group_id: str | None = None
    processing_method: str = "batch"
    period: str | None = None
    version: str = "v1.0"
    variables_count: int = 0
    quality_average: float = 0.0
    success_rate: float = 0.0
    processing_time: int | None = None
    error_message: str | None = None
    data: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def detected_columns(self) -> list[str]:
        columns = (self.data or {}).get("detected_columns")
        return list(columns) if isinstance(columns, list) else []


@dataclass(frozen=True)
class DictionaryDraft:
    name: str
    instance_id: uuid.UUID
    instance_name: str
    metadata_type: str
    sql_view_id: str
    description: str | None = None
    group_id: str | None = None
    processing_method: str = "batch"
    period: str | None = None
    version: str = "v1.0"
    data: dict[str, Any] | None = None


@dataclass(frozen=True)
class DictionaryOutcome:
    """
    Final statistics written once when a job finishes.
    """

    status: str
    variables_count: int
    quality_average: float
    success_rate: float
    processing_time: int
    error_message: str | None = None


@dataclass(frozen=True)
class VariableDraft:
    dictionary_id: uuid.UUID
    variable_uid: str
    variable_name: str
    variable_type: str
    quality_score: int
    status: str = "success"
    processing_time: int | None = None
    error_message: str | None = None
    metadata_json: dict[str, Any] = field(default_factory=dict)
    analytics_api: str | None = None
    metadata_api: str | None = None
    data_values_api: str | None = None
    export_api: str | None = None
    web_ui_url: str | None = None


@dataclass(frozen=True)
class VariableRecord:
    id: uuid.UUID
    dictionary_id: uuid.UUID
    variable_uid: str
    variable_name: str
    variable_type: str
    quality_score: int
    status: str
    processing_time: int | None = None
    error_message: str | None = None
    metadata_json: dict[str, Any] = field(default_factory=dict)
    analytics_api: str | None = None
    metadata_api: str | None = None
    data_values_api: str | None = None
    export_api: str | None = None
    web_ui_url: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class InstanceRecord:
    id: uuid.UUID
    name: str
    base_url: str
    username: str
    password_encrypted: str
    status: str = "active"
