"""
Schemas for SQL view preview, table conversion and save-from-preview.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PreviewRequest(BaseModel):
    instance_id: str | None = None
    sql_view_id: str | None = None
    metadata_type: str | None = None
    group_id: str | None = None
    dictionary_name: str | None = None
    limit: int | None = Field(default=None, ge=1)


class PreviewResponse(BaseModel):
    preview_id: str
    dictionary_name: str
    instance_id: str
    instance_name: str | None = None
    metadata_type: str | None = None
    sql_view_id: str
    group_id: str | None = None
    raw_data: list[Any] = Field(default_factory=list)
    headers: list[str] = Field(default_factory=list)
    row_count: int
    preview_count: int
    status: str
    from_cache: bool = False
    stale: bool = False
    execution_time: int
    created_at: str


class ConvertTableRequest(BaseModel):
    preview_id: str | None = None
    raw_data: Any = None
    headers: list[str] | None = None


class ConvertTableResponse(BaseModel):
    preview_id: str | None = None
    structured_data: list[dict[str, str]] = Field(default_factory=list)
    detected_columns: list[str] = Field(default_factory=list)
    column_metadata: dict[str, dict[str, Any]] = Field(default_factory=dict)
    quality_score: int
    total_rows: int


class SaveFromPreviewRequest(BaseModel):
    preview_id: str | None = None
    dictionary_name: str | None = None
    instance_id: str | None = None
    sql_view_id: str | None = None
    metadata_type: str | None = None
    group_id: str | None = None
    structured_data: Any = None
    detected_columns: list[str] | None = None
    column_metadata: dict[str, Any] | None = None


class SaveFromPreviewResponse(BaseModel):
    dictionary_id: str
    dictionary_name: str
    variables_count: int
    failed_count: int
    quality_score: float
    success_rate: float
    processing_time: float
    status: str
    variables_sample: list[dict[str, Any]] = Field(default_factory=list)
    api_access: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
