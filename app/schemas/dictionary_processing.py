"""
Schemas for dictionary processing control and status endpoints.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ProcessingOptionsPayload(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=10_000)
    delay_between_items_ms: int | None = Field(default=None, ge=0, le=60_000)
    page_size: int | None = Field(default=None, ge=1, le=50_000)
    use_cache: bool = True


class ProcessActionRequest(BaseModel):
    action: str
    options: ProcessingOptionsPayload | None = None


class ProcessActionResponse(BaseModel):
    success: bool
    message: str
    dictionaryId: UUID


class ProcessStatusResponse(BaseModel):
    dictionaryId: UUID
    isProcessing: bool
    activeJobs: int
    allActiveJobs: list[UUID] = Field(default_factory=list)
    progress: dict[str, Any] | None = None
