"""
app/api/dependencies.py

Shared FastAPI dependencies and error translation for the dictionary routers.
"""

from __future__ import annotations

import logging
from typing import NoReturn
from uuid import UUID

from fastapi import BackgroundTasks, HTTPException, status

from app.errors import DictionaryServiceError
from app.services.processing_coordinator import FastAPIBackgroundTaskExecutor, ProcessingTaskExecutor

logger = logging.getLogger(__name__)


def get_processing_executor(background_tasks: BackgroundTasks) -> ProcessingTaskExecutor:
    """
    Run processing jobs after the response is sent.
    """

    return FastAPIBackgroundTaskExecutor(background_tasks)


def parse_dictionary_id(dictionary_id: str) -> UUID:
    try:
        return UUID(dictionary_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_error", "message": f"Invalid dictionary id: {dictionary_id}"},
        ) from exc


def raise_http_error(exc: Exception, *, operation: str) -> NoReturn:
    """
    Translate a service error into an ``HTTPException``. Typed errors keep
    their status and code; anything else becomes a logged 500.
    """

    if isinstance(exc, DictionaryServiceError):
        if exc.status_code >= 500:
            logger.error("%s failed code=%s error=%s", operation, exc.code, exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc

    logger.exception("%s failed unexpectedly", operation)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "internal_error", "message": f"{operation} failed; see server logs for details."},
    ) from exc
