"""
app/services/export_service.py

Per-variable and combined dictionary exports.

Formats
-------
variable : json | csv | xml | summary
combined : json | csv | xml | summary | excel | xlsx

Analytics and metadata for every variable are resolved in this order:

    metadata cache  →  fresh fetch (needs stored instance credentials)
                    →  mock analytics (only with EXPORT_MOCK_FALLBACK=true)
                    →  no data, with an error recorded on the variable

No serialisation to HTTP happens here; the router wraps ``ExportDocument``.
"""

from __future__ import annotations

import csv
import io
import logging
import random
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from xml.etree import ElementTree

from openpyxl import Workbook

from app.cache.bounded_cache import BoundedCache, get_metadata_cache
from app.config import ExportSettings, get_export_settings
from app.connectors.analytics_connector import AnalyticsConnector
from app.domain.dictionary import DictionaryRecord, VariableRecord
from app.domain.remote import RemoteHandle
from app.errors import NotFoundError, UpstreamError, ValidationError
from app.mappers.api_urls import curl_command, normalize_api_base_url
from app.repositories.dictionary_store import DictionaryStore, SQLAlchemyDictionaryStore
from app.services.credential_service import CredentialService

logger = logging.getLogger(__name__)

VARIABLE_FORMATS: frozenset[str] = frozenset({"json", "csv", "xml", "summary"})
COMBINED_FORMATS: frozenset[str] = frozenset({"json", "csv", "xml", "summary", "excel", "xlsx"})

NO_DATA = "No Data"
NO_SESSION_ERROR = "No authenticated remote session"

_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VariableData:
    """
    One variable together with whatever analytics and metadata could be
    resolved for it. ``source`` is ``cache``, ``remote``, ``mock`` or ``none``.
    """

    variable: VariableRecord
    analytics: dict[str, Any] | None
    metadata: dict[str, Any] | None
    source: str
    error: str | None = None

    @property
    def analytics_rows(self) -> list[list[Any]]:
        rows = (self.analytics or {}).get("rows")
        return [row for row in rows if isinstance(row, list)] if isinstance(rows, list) else []


@dataclass(frozen=True)
class ExportDocument:
    """
    Export body plus how to ship it. ``body`` is a dict for JSON formats,
    ``str`` for csv/xml and ``bytes`` for xlsx.
    """

    body: Any
    media_type: str
    filename: str | None = None


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _cell(row: Sequence[Any], index: int, default: str) -> Any:
    if index < len(row) and row[index] not in (None, ""):
        return row[index]
    return default


def mock_analytics(uid: str, period: str, org_unit: str) -> dict[str, Any]:
    return {
        "headers": [
            {"name": "dx", "column": "Data"},
            {"name": "pe", "column": "Period"},
            {"name": "ou", "column": "Organisation unit"},
            {"name": "value", "column": "Value"},
        ],
        "rows": [[uid, period, org_unit, str(random.randint(100, 1099))]],
        "height": 1,
        "width": 4,
    }


def value_summary(rows: Sequence[Sequence[Any]]) -> dict[str, Any]:
    """
    Data point count plus total/average/min/max over parseable values.
    """

    values = [v for v in (_to_float(row[3]) for row in rows if len(row) > 3) if v is not None]
    if not values:
        return {"dataPoints": len(rows), "totalValue": 0, "averageValue": 0, "minValue": None, "maxValue": None}
    total = sum(values)
    return {
        "dataPoints": len(rows),
        "totalValue": total,
        "averageValue": total / len(values),
        "minValue": min(values),
        "maxValue": max(values),
    }


def combined_summary(items: Sequence[VariableData]) -> dict[str, Any]:
    """
    A variable counts as successful when it has analytics and no error.
    """

    total = len(items)
    successful = sum(1 for item in items if item.error is None and item.analytics is not None)
    by_type: dict[str, dict[str, Any]] = {}
    for item in items:
        group = by_type.setdefault(
            item.variable.variable_type,
            {"count": 0, "totalDataPoints": 0, "qualitySum": 0},
        )
        group["count"] += 1
        group["totalDataPoints"] += len(item.analytics_rows)
        group["qualitySum"] += item.variable.quality_score or 0

    quality_sum = sum(item.variable.quality_score or 0 for item in items)
    return {
        "totalVariables": total,
        "successfulVariables": successful,
        "failedVariables": total - successful,
        "successRate": round(successful / total * 100, 1) if total else 0.0,
        "totalDataPoints": sum(len(item.analytics_rows) for item in items),
        "averageQualityScore": round(quality_sum / total, 1) if total else 0.0,
        "dataByType": {
            kind: {
                "count": group["count"],
                "totalDataPoints": group["totalDataPoints"],
                "averageQuality": round(group["qualitySum"] / group["count"], 1),
            }
            for kind, group in by_type.items()
        },
    }


def _endpoints(variable: VariableRecord) -> dict[str, str | None]:
    return {
        "analytics": variable.analytics_api,
        "metadata": variable.metadata_api,
        "data_values": variable.data_values_api,
        "export": variable.export_api,
        "web_ui": variable.web_ui_url,
    }


def _variable_block(item: VariableData) -> dict[str, Any]:
    variable = item.variable
    description = (item.metadata or {}).get("description") or variable.metadata_json.get("description")
    return {
        "uid": variable.variable_uid,
        "name": variable.variable_name,
        "type": variable.variable_type,
        "description": description,
        "qualityScore": variable.quality_score,
    }


def _analytics_rows_xml(parent: ElementTree.Element, rows: Sequence[Sequence[Any]]) -> None:
    for row in rows:
        node = ElementTree.SubElement(parent, "row")
        for index, tag in enumerate(("dx", "pe", "ou", "value")):
            ElementTree.SubElement(node, tag).text = "" if index >= len(row) else str(row[index])


def _summary_xml(parent: ElementTree.Element, summary: dict[str, Any]) -> None:
    for tag, value in summary.items():
        if tag == "dataByType":
            by_type = ElementTree.SubElement(parent, tag)
            for kind, group in value.items():
                node = ElementTree.SubElement(by_type, "type", name=kind)
                for key, figure in group.items():
                    ElementTree.SubElement(node, key).text = str(figure)
        else:
            ElementTree.SubElement(parent, tag).text = str(value)


def _xml_text(root: ElementTree.Element) -> str:
    ElementTree.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ElementTree.tostring(root, encoding="unicode")


def _csv_text(header: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ExportAggregator:
    """
    Builds variable and combined exports for one dictionary.
    """

    def __init__(
        self,
        *,
        store: DictionaryStore | None = None,
        credential_service: CredentialService | None = None,
        cache: BoundedCache | None = None,
        connector_factory: Callable[[RemoteHandle], AnalyticsConnector] | None = None,
        settings: ExportSettings | None = None,
    ) -> None:
        self._store = store or SQLAlchemyDictionaryStore()
        self._credentials = credential_service or CredentialService(store=self._store)
        self._cache = cache if cache is not None else get_metadata_cache()
        self._connector_factory = connector_factory or (lambda handle: AnalyticsConnector(handle=handle))
        self._settings = settings or get_export_settings()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def export_variable(
        self,
        dictionary_id: uuid.UUID,
        variable_uid: str,
        *,
        fmt: str = "json",
        period: str | None = None,
        org_unit: str | None = None,
        include_curl: bool = False,
    ) -> ExportDocument:
        if fmt not in VARIABLE_FORMATS:
            raise ValidationError(f"Invalid format {fmt!r}. Must be one of: {sorted(VARIABLE_FORMATS)}.")
        period = period or self._settings.default_period
        org_unit = org_unit or self._settings.default_org_unit

        dictionary = self._require_dictionary(dictionary_id)
        variables = self._store.list_variables(dictionary_id, [variable_uid])
        if not variables:
            raise NotFoundError(f"Variable not found: {variable_uid}")

        handle = self._resolve_handle(dictionary)
        item = self.load_variable_data(dictionary, variables[0], handle, period=period, org_unit=org_unit)
        export = self._variable_export(item, fmt=fmt, period=period, org_unit=org_unit)
        if include_curl and handle is not None:
            export["curlCommand"] = {
                "analytics": curl_command(item.variable.analytics_api or ""),
                "metadata": curl_command(item.variable.metadata_api or ""),
                "note": "Replace 'username:password' with your actual credentials",
            }

        logger.info(
            "Variable export dictionary=%s uid=%s format=%s source=%s",
            dictionary_id,
            variable_uid,
            fmt,
            item.source,
        )
        filename = f"{variable_uid}_export.{fmt}"
        if fmt == "csv":
            return ExportDocument(self._variable_csv(export), "text/csv; charset=utf-8", filename)
        if fmt == "xml":
            return ExportDocument(self._variable_xml(export), "application/xml", filename)
        if fmt == "summary":
            return ExportDocument(self._variable_summary(export), "application/json")
        return ExportDocument(export, "application/json")

    def export_combined(
        self,
        dictionary_id: uuid.UUID,
        variable_uids: Sequence[str],
        *,
        fmt: str = "json",
        period: str | None = None,
        org_unit: str | None = None,
        include_curl: bool = False,
    ) -> ExportDocument:
        if not variable_uids:
            raise ValidationError("Variables array is required")
        if fmt not in COMBINED_FORMATS:
            raise ValidationError(f"Invalid format {fmt!r}. Must be one of: {sorted(COMBINED_FORMATS)}.")
        period = period or self._settings.default_period
        org_unit = org_unit or self._settings.default_org_unit

        dictionary = self._require_dictionary(dictionary_id)
        variables = self._store.list_variables(dictionary_id, list(variable_uids))
        handle = self._resolve_handle(dictionary)
        items = [
            self.load_variable_data(dictionary, variable, handle, period=period, org_unit=org_unit)
            for variable in variables
        ]
        export = self._combined_export(dictionary, items, fmt=fmt, period=period, org_unit=org_unit)
        if include_curl and handle is not None:
            export["curlCommands"] = self._bulk_curl(handle, items, period=period, org_unit=org_unit)

        logger.info(
            "Combined export dictionary=%s requested=%d found=%d format=%s",
            dictionary_id,
            len(variable_uids),
            len(items),
            fmt,
        )
        stem = f"dictionary_{dictionary_id}_export"
        if fmt == "csv":
            return ExportDocument(self._combined_csv(export), "text/csv; charset=utf-8", f"{stem}.csv")
        if fmt == "xml":
            return ExportDocument(self._combined_xml(export), "application/xml", f"{stem}.xml")
        if fmt == "summary":
            return ExportDocument(export["summary"], "application/json")
        if fmt == "excel":
            return ExportDocument({"sheets": self.excel_sheets(export)}, "application/json")
        if fmt == "xlsx":
            return ExportDocument(self.xlsx_bytes(self.excel_sheets(export)), _XLSX_MEDIA_TYPE, f"{stem}.xlsx")
        return ExportDocument(export, "application/json")

    def load_variable_data(
        self,
        dictionary: DictionaryRecord,
        variable: VariableRecord,
        handle: RemoteHandle | None,
        *,
        period: str,
        org_unit: str,
    ) -> VariableData:
        uid = variable.variable_uid
        analytics_key = f"analytics:{dictionary.instance_id}:{uid}:{period}:{org_unit}"
        metadata_key = f"metadata:{dictionary.instance_id}:{variable.variable_type}:{uid}"

        analytics = self._cache.get(analytics_key)
        metadata = self._cache.get(metadata_key)
        if analytics is not None:
            return VariableData(variable, analytics, metadata or variable.metadata_json, source="cache")

        if handle is not None:
            connector = self._connector_factory(handle)
            try:
                analytics = connector.fetch_analytics(
                    uid,
                    variable.variable_type,
                    period=period,
                    org_unit=org_unit,
                )
                if metadata is None:
                    metadata = connector.fetch_metadata(uid, variable.variable_type)
                    self._cache.set(metadata_key, metadata)
            except UpstreamError as exc:
                logger.warning(
                    "Variable data fetch failed uid=%s status=%s error=%s",
                    uid,
                    exc.upstream_status,
                    exc.message,
                )
                return VariableData(variable, None, metadata or variable.metadata_json, "none", exc.message)
            self._cache.set(analytics_key, analytics)
            return VariableData(variable, analytics, metadata, source="remote")

        if self._settings.mock_fallback:
            logger.warning("Serving mock analytics uid=%s (EXPORT_MOCK_FALLBACK enabled)", uid)
            return VariableData(variable, mock_analytics(uid, period, org_unit), variable.metadata_json, "mock")

        return VariableData(variable, None, metadata or variable.metadata_json, "none", NO_SESSION_ERROR)

    # ------------------------------------------------------------------
    # Variable export
    # ------------------------------------------------------------------

    def _variable_export(self, item: VariableData, *, fmt: str, period: str, org_unit: str) -> dict[str, Any]:
        table_row = item.variable.metadata_json or {}
        return {
            "variable": _variable_block(item),
            "complete_table_row": table_row,
            "table_structure": {"source": "sql_view_preview", "original_columns": list(table_row)},
            "analytics": item.analytics,
            "metadata": item.metadata,
            "enhanced_api_endpoints": _endpoints(item.variable),
            "error": item.error,
            "exportInfo": {
                "period": period,
                "orgUnit": org_unit,
                "exportedAt": _now_iso(),
                "format": fmt,
                "source": item.source,
            },
        }

    @staticmethod
    def _variable_csv(export: dict[str, Any]) -> str:
        columns = export["table_structure"]["original_columns"]
        table_row = export["complete_table_row"]
        variable = export["variable"]
        endpoints = export["enhanced_api_endpoints"]
        prefix = [
            variable["uid"],
            variable["name"],
            variable["type"] or "unknown",
            variable["qualityScore"] or 0,
            *[str(table_row.get(column) or "") for column in columns],
            endpoints["data_values"] or "",
            endpoints["analytics"] or "",
        ]
        rows = (export["analytics"] or {}).get("rows") or []
        body = [
            prefix + [_cell(row, 1, "Unknown"), _cell(row, 2, "Unknown"), _cell(row, 3, "0")] for row in rows
        ] or [prefix + [NO_DATA, NO_DATA, NO_DATA]]
        header = [
            "Variable_UID",
            "Variable_Name",
            "Type",
            "Quality_Score",
            *columns,
            "Data_Values_API",
            "Analytics_API",
            "Period",
            "OrgUnit",
            "Value",
        ]
        return _csv_text(header, body)

    @staticmethod
    def _variable_xml(export: dict[str, Any]) -> str:
        root = ElementTree.Element("variableExport")
        node = ElementTree.SubElement(root, "variable")
        for tag, key in (("uid", "uid"), ("name", "name"), ("type", "type"), ("qualityScore", "qualityScore")):
            ElementTree.SubElement(node, tag).text = str(export["variable"][key])
        info = ElementTree.SubElement(root, "exportInfo")
        for tag in ("period", "orgUnit", "exportedAt"):
            ElementTree.SubElement(info, tag).text = str(export["exportInfo"][tag])
        rows = ElementTree.SubElement(ElementTree.SubElement(root, "analytics"), "rows")
        _analytics_rows_xml(rows, (export["analytics"] or {}).get("rows") or [])
        return _xml_text(root)

    @staticmethod
    def _variable_summary(export: dict[str, Any]) -> dict[str, Any]:
        rows = (export["analytics"] or {}).get("rows") or []
        return {
            "variable": export["variable"],
            "period": export["exportInfo"]["period"],
            "orgUnit": export["exportInfo"]["orgUnit"],
            **value_summary(rows),
            "lastUpdated": export["exportInfo"]["exportedAt"],
        }

    # ------------------------------------------------------------------
    # Combined export
    # ------------------------------------------------------------------

    def _combined_export(
        self,
        dictionary: DictionaryRecord,
        items: Sequence[VariableData],
        *,
        fmt: str,
        period: str,
        org_unit: str,
    ) -> dict[str, Any]:
        detected = dictionary.detected_columns
        if not detected and items:
            detected = list(items[0].variable.metadata_json)
        return {
            "dictionary": {
                "id": str(dictionary.id),
                "name": dictionary.name,
                "description": dictionary.description,
                "instance": dictionary.instance_name,
                "period": period,
                "orgUnit": org_unit,
                "detected_columns": detected,
            },
            "variables": [
                {
                    **_variable_block(item),
                    "analytics": item.analytics,
                    "metadata": item.metadata,
                    "error": item.error,
                    "source": item.source,
                    "complete_table_row": item.variable.metadata_json or {},
                    "enhanced_api_endpoints": _endpoints(item.variable),
                }
                for item in items
            ],
            "table_export": {
                "detected_columns": detected,
                "complete_table_data": [item.variable.metadata_json or {} for item in items],
            },
            "summary": combined_summary(items),
            "exportInfo": {
                "exportedAt": _now_iso(),
                "format": fmt,
                "variableCount": len(items),
                "period": period,
                "orgUnit": org_unit,
            },
        }

    @staticmethod
    def _combined_csv(export: dict[str, Any]) -> str:
        columns = export["table_export"]["detected_columns"]
        name = export["dictionary"]["name"]
        body: list[list[Any]] = []
        for variable in export["variables"]:
            table_row = variable["complete_table_row"]
            endpoints = variable["enhanced_api_endpoints"]
            prefix = [
                name,
                variable["uid"],
                variable["name"],
                variable["type"],
                variable["qualityScore"],
                *[str(table_row.get(column) or "") for column in columns],
                endpoints["data_values"] or "",
                endpoints["analytics"] or "",
            ]
            rows = (variable["analytics"] or {}).get("rows") or []
            if not rows:
                body.append(prefix + [NO_DATA, NO_DATA, NO_DATA, 0])
            for row in rows:
                body.append(prefix + [_cell(row, 1, "Unknown"), _cell(row, 2, "Unknown"), _cell(row, 3, "0"), 1])
        header = [
            "Dictionary",
            "Variable_UID",
            "Variable_Name",
            "Type",
            "Quality_Score",
            *columns,
            "Data_Values_API",
            "Analytics_API",
            "Period",
            "OrgUnit",
            "Value",
            "Data_Points",
        ]
        return _csv_text(header, body)

    @staticmethod
    def _combined_xml(export: dict[str, Any]) -> str:
        root = ElementTree.Element("combinedExport")
        dictionary = ElementTree.SubElement(root, "dictionary")
        ElementTree.SubElement(dictionary, "id").text = export["dictionary"]["id"]
        ElementTree.SubElement(dictionary, "name").text = export["dictionary"]["name"]
        ElementTree.SubElement(dictionary, "period").text = export["exportInfo"]["period"]
        ElementTree.SubElement(dictionary, "orgUnit").text = export["exportInfo"]["orgUnit"]

        variables = ElementTree.SubElement(root, "variables")
        for variable in export["variables"]:
            node = ElementTree.SubElement(variables, "variable")
            ElementTree.SubElement(node, "uid").text = variable["uid"]
            ElementTree.SubElement(node, "name").text = variable["name"]
            ElementTree.SubElement(node, "type").text = variable["type"]
            ElementTree.SubElement(node, "qualityScore").text = str(variable["qualityScore"])
            analytics = ElementTree.SubElement(node, "analytics")
            rows = (variable["analytics"] or {}).get("rows") or []
            if rows:
                _analytics_rows_xml(analytics, rows)
            else:
                ElementTree.SubElement(analytics, "row").text = NO_DATA

        _summary_xml(ElementTree.SubElement(root, "summary"), export["summary"])
        return _xml_text(root)

    @staticmethod
    def excel_sheets(export: dict[str, Any]) -> dict[str, list[list[Any]]]:
        summary = export["summary"]
        info = export["exportInfo"]
        analytics_sheet: list[list[Any]] = [["Variable UID", "Variable Name", "Period", "Org Unit", "Value"]]
        for variable in export["variables"]:
            rows = (variable["analytics"] or {}).get("rows") or []
            if not rows:
                analytics_sheet.append([variable["uid"], variable["name"], NO_DATA, NO_DATA, NO_DATA])
            for row in rows:
                analytics_sheet.append(
                    [variable["uid"], variable["name"], _cell(row, 1, ""), _cell(row, 2, ""), _cell(row, 3, "")]
                )
        return {
            "Summary": [
                ["Dictionary Name", export["dictionary"]["name"]],
                ["Export Date", info["exportedAt"]],
                ["Period", info["period"]],
                ["Organization Unit", info["orgUnit"]],
                ["Total Variables", summary["totalVariables"]],
                ["Successful Variables", summary["successfulVariables"]],
                ["Failed Variables", summary["failedVariables"]],
                ["Success Rate", f"{summary['successRate']}%"],
                ["Total Data Points", summary["totalDataPoints"]],
                ["Average Quality Score", summary["averageQualityScore"]],
                [],
                ["Type", "Variables", "Data Points", "Average Quality"],
                *[
                    [kind, group["count"], group["totalDataPoints"], group["averageQuality"]]
                    for kind, group in summary["dataByType"].items()
                ],
            ],
            "Variables": [
                ["UID", "Name", "Type", "Quality Score", "Data Points", "Status"],
                *[
                    [
                        variable["uid"],
                        variable["name"],
                        variable["type"],
                        variable["qualityScore"],
                        len((variable["analytics"] or {}).get("rows") or []),
                        "Error" if variable["error"] else "Success",
                    ]
                    for variable in export["variables"]
                ],
            ],
            "Analytics": analytics_sheet,
        }

    @staticmethod
    def xlsx_bytes(sheets: dict[str, list[list[Any]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            sheet = workbook.create_sheet(title=title)
            for row in rows:
                sheet.append(row)
        buf = io.BytesIO()
        workbook.save(buf)
        return buf.getvalue()

    @staticmethod
    def _bulk_curl(
        handle: RemoteHandle,
        items: Sequence[VariableData],
        *,
        period: str,
        org_unit: str,
    ) -> dict[str, Any]:
        api_url = normalize_api_base_url(handle.base_url)
        uids = ";".join(item.variable.variable_uid for item in items)
        bulk_analytics = f"{api_url}/analytics?dimension=dx:{uids}&dimension=pe:{period}&dimension=ou:{org_unit}"
        bulk_metadata = f"{api_url}/metadata?filter=id:in:[{uids.replace(';', ',')}]&fields=:all"
        return {
            "bulkAnalytics": curl_command(bulk_analytics),
            "bulkMetadata": curl_command(bulk_metadata),
            "individual": [
                {
                    "uid": item.variable.variable_uid,
                    "name": item.variable.variable_name,
                    "analytics": curl_command(item.variable.analytics_api or ""),
                }
                for item in items
            ],
            "note": "Replace 'username:password' with your actual credentials",
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_dictionary(self, dictionary_id: uuid.UUID) -> DictionaryRecord:
        dictionary = self._store.get_dictionary(dictionary_id)
        if dictionary is None:
            raise NotFoundError(f"Dictionary not found: {dictionary_id}")
        return dictionary

    def _resolve_handle(self, dictionary: DictionaryRecord) -> RemoteHandle | None:
        try:
            return self._credentials.resolve_handle(dictionary.instance_id)
        except NotFoundError as exc:
            logger.warning("No remote session for export dictionary=%s reason=%s", dictionary.id, exc.message)
            return None


@lru_cache(maxsize=1)
def get_export_aggregator() -> ExportAggregator:
    return ExportAggregator()
