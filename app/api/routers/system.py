"""
Cache administration endpoints.
"""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, HTTPException, status

from app.cache.bounded_cache import get_metadata_cache, get_query_cache
from app.schemas.dictionary_export import CacheInvalidateRequest, CacheInvalidateResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/system/cache")
def cache_stats() -> dict[str, dict]:
    return {
        "query": get_query_cache().stats().to_dict(),
        "metadata": get_metadata_cache().stats().to_dict(),
    }


@router.post("/system/cache/invalidate", response_model=CacheInvalidateResponse)
def invalidate_cache(payload: CacheInvalidateRequest) -> CacheInvalidateResponse:
    try:
        pattern = re.compile(payload.pattern)
    except re.error as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_error", "message": f"Invalid pattern: {exc}"},
        ) from exc

    caches = {"query": get_query_cache(), "metadata": get_metadata_cache()}
    if payload.cache != "all":
        caches = {payload.cache: caches[payload.cache]}
    removed = {name: cache.invalidate(pattern) for name, cache in caches.items()}
    logger.info("Cache invalidated pattern=%r removed=%s", payload.pattern, removed)
    return CacheInvalidateResponse(removed=removed)
