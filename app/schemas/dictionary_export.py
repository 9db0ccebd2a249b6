"""
Schemas for dictionary export and cache administration endpoints.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CombinedExportRequest(BaseModel):
    variables: list[str] = Field(default_factory=list)
    format: str = "json"
    period: str | None = None
    org_unit: str | None = None
    include_curl: bool = False


class CacheInvalidateRequest(BaseModel):
    cache: str = Field(default="all", pattern="^(query|metadata|all)$")
    pattern: str = Field(min_length=1)


class CacheInvalidateResponse(BaseModel):
    removed: dict[str, int] = Field(default_factory=dict)
