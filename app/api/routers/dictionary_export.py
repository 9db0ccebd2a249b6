"""
Dictionary export endpoints.

GET  /dictionaries/{dictionary_id}/export/variable/{variable_uid}
     ?format=json|csv|xml|summary&period=&org_unit=&include_curl=
POST /dictionaries/{dictionary_id}/export/combined
     {variables[], format, period, org_unit, include_curl}

Responses
---------
json / summary / excel → JSONResponse
csv / xml / xlsx       → file download with Content-Disposition

All transformation logic lives in ExportAggregator; the router only handles
HTTP plumbing.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response

from app.api.dependencies import parse_dictionary_id, raise_http_error
from app.schemas.dictionary_export import CombinedExportRequest
from app.services.export_service import ExportAggregator, ExportDocument, get_export_aggregator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dictionary-export"])


def _to_response(document: ExportDocument) -> Response:
    if document.media_type == "application/json":
        return JSONResponse(content=document.body)
    headers = {}
    if document.filename:
        headers["Content-Disposition"] = f'attachment; filename="{document.filename}"'
    return Response(content=document.body, media_type=document.media_type, headers=headers)


@router.get("/dictionaries/{dictionary_id}/export/variable/{variable_uid}")
def export_variable(
    dictionary_id: str,
    variable_uid: str,
    output_format: str = Query(default="json", alias="format", description="json, csv, xml or summary"),
    period: str | None = Query(default=None, description="Analytics period, e.g. THIS_YEAR"),
    org_unit: str | None = Query(default=None, description="Analytics org unit, e.g. USER_ORGUNIT"),
    include_curl: bool = Query(default=False, description="Attach curl commands"),
    aggregator: ExportAggregator = Depends(get_export_aggregator),
) -> Response:
    dictionary_uuid = parse_dictionary_id(dictionary_id)
    try:
        document = aggregator.export_variable(
            dictionary_uuid,
            variable_uid,
            fmt=output_format,
            period=period,
            org_unit=org_unit,
            include_curl=include_curl,
        )
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation="Variable export")
    return _to_response(document)


@router.post("/dictionaries/{dictionary_id}/export/combined")
def export_combined(
    dictionary_id: str,
    payload: CombinedExportRequest,
    aggregator: ExportAggregator = Depends(get_export_aggregator),
) -> Response:
    dictionary_uuid = parse_dictionary_id(dictionary_id)
    try:
        document = aggregator.export_combined(
            dictionary_uuid,
            payload.variables,
            fmt=payload.format,
            period=payload.period,
            org_unit=payload.org_unit,
            include_curl=payload.include_curl,
        )
    except Exception as exc:  # noqa: BLE001
        raise_http_error(exc, operation="Combined export")
    return _to_response(document)
