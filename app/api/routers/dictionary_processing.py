"""
Dictionary processing control endpoints.

POST /dictionaries/{dictionary_id}/process   {action: start|cancel|reprocess, options?}
GET  /dictionaries/{dictionary_id}/process

Jobs run after the response is sent; clients poll the GET endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_processing_executor, parse_dictionary_id, raise_http_error
from app.schemas.dictionary_processing import (
    ProcessActionRequest,
    ProcessActionResponse,
    ProcessStatusResponse,
)
from app.services.processing_coordinator import (
    ProcessingCoordinator,
    ProcessingTaskExecutor,
    get_processing_coordinator,
)

router = APIRouter(tags=["dictionary-processing"])

_ACTIONS = frozenset({"start", "cancel", "reprocess"})


@router.post("/dictionaries/{dictionary_id}/process", response_model=ProcessActionResponse)
def control_processing(
    dictionary_id: str,
    payload: ProcessActionRequest,
    executor: ProcessingTaskExecutor = Depends(get_processing_executor),
    coordinator: ProcessingCoordinator = Depends(get_processing_coordinator),
) -> ProcessActionResponse:
    if payload.action not in _ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "validation_error",
                "message": f"Invalid action {payload.action!r}. Must be one of: {sorted(_ACTIONS)}.",
            },
        )
    dictionary_uuid = parse_dictionary_id(dictionary_id)

    if payload.action == "cancel":
        cancelled = coordinator.cancel(dictionary_uuid)
        return ProcessActionResponse(
            success=cancelled,
            message="Cancellation requested" if cancelled else "No active processing job",
            dictionaryId=dictionary_uuid,
        )

    options = payload.options.model_dump(exclude_none=True) if payload.options else None
    operation = coordinator.start if payload.action == "start" else coordinator.reprocess
    try:
        operation(dictionary_uuid, executor=executor, options=options)
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation=f"Dictionary {payload.action}")

    verb = "started" if payload.action == "start" else "reprocessing started"
    return ProcessActionResponse(success=True, message=f"Processing {verb}", dictionaryId=dictionary_uuid)


@router.get("/dictionaries/{dictionary_id}/process", response_model=ProcessStatusResponse)
def get_processing_status(
    dictionary_id: str,
    coordinator: ProcessingCoordinator = Depends(get_processing_coordinator),
) -> ProcessStatusResponse:
    dictionary_uuid = parse_dictionary_id(dictionary_id)
    active = coordinator.list_active()
    job = coordinator.get_job(dictionary_uuid)
    return ProcessStatusResponse(
        dictionaryId=dictionary_uuid,
        isProcessing=job is not None,
        activeJobs=len(active),
        allActiveJobs=active,
        progress=job.progress() if job is not None else None,
    )
