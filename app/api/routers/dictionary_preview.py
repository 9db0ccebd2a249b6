"""
SQL view preview endpoints.

POST /dictionaries/preview            one capped page of a SQL view
POST /dictionaries/convert-table      raw preview rows -> structured table
POST /dictionaries/save-from-preview  structured table -> persisted dictionary
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.dependencies import raise_http_error
from app.schemas.dictionary_preview import (
    ConvertTableRequest,
    ConvertTableResponse,
    PreviewRequest,
    PreviewResponse,
    SaveFromPreviewRequest,
    SaveFromPreviewResponse,
)
from app.services.preview_service import PreviewService, get_preview_service

router = APIRouter(tags=["dictionary-preview"])


@router.post("/dictionaries/preview", response_model=PreviewResponse)
def preview_sql_view(
    payload: PreviewRequest,
    service: PreviewService = Depends(get_preview_service),
) -> PreviewResponse:
    try:
        envelope = service.preview(**payload.model_dump())
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation="SQL view preview")
    return PreviewResponse(**envelope)


@router.post("/dictionaries/convert-table", response_model=ConvertTableResponse)
def convert_table(
    payload: ConvertTableRequest,
    service: PreviewService = Depends(get_preview_service),
) -> ConvertTableResponse:
    try:
        table = service.convert_table(
            raw_data=payload.raw_data,
            headers=payload.headers,
            preview_id=payload.preview_id,
        )
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation="Table conversion")
    return ConvertTableResponse(**table)


@router.post("/dictionaries/save-from-preview", response_model=SaveFromPreviewResponse)
def save_from_preview(
    payload: SaveFromPreviewRequest,
    service: PreviewService = Depends(get_preview_service),
) -> SaveFromPreviewResponse:
    fields = payload.model_dump()
    fields["column_profiles"] = fields.pop("column_metadata")
    try:
        result = service.save_from_preview(**fields)
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation="Save from preview")
    return SaveFromPreviewResponse(**result)
