"""
app/domain/query_result.py

Response shapes returned by the SQL view data endpoint, and the pure
functions that normalize each into ``(headers, rows)``.

Shapes
------
GridShape        ``{"listGrid": {"headers": [{"name": ...}], "rows": [[...]]}}``
HeaderRowsShape  ``{"headers": [...], "rows": [[...]]}``
ArrayShape       ``[{...}, {...}]``
NestedShape      ``{"data": [...], "headers"?: [...]}``
UnknownShape     anything else

Positional rows are zipped with their headers so downstream mapping only
ever sees keyed rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class GridShape:
    grid: dict[str, Any]


@dataclass(frozen=True)
class HeaderRowsShape:
    headers: list[Any]
    rows: list[Any]


@dataclass(frozen=True)
class ArrayShape:
    items: list[Any]


@dataclass(frozen=True)
class NestedShape:
    items: list[Any]
    headers: list[Any] | None = None


@dataclass(frozen=True)
class UnknownShape:
    keys: list[str] = field(default_factory=list)


ResponseShape = Union[GridShape, HeaderRowsShape, ArrayShape, NestedShape, UnknownShape]


@dataclass(frozen=True)
class NormalizedPage:
    headers: list[str]
    rows: list[dict[str, Any]]


def classify_response(payload: Any) -> ResponseShape:
    """
    Decide which response shape ``payload`` has. Order matters: a grid
    payload also has keys, and a nested payload may carry headers.
    """

    if isinstance(payload, list):
        return ArrayShape(items=payload)
    if not isinstance(payload, dict):
        return UnknownShape()

    grid = payload.get("listGrid")
    if isinstance(grid, dict):
        return GridShape(grid=grid)
    if isinstance(payload.get("rows"), list):
        return HeaderRowsShape(headers=list(payload.get("headers") or []), rows=payload["rows"])
    if isinstance(payload.get("data"), list):
        headers = payload.get("headers")
        return NestedShape(items=payload["data"], headers=list(headers) if isinstance(headers, list) else None)
    return UnknownShape(keys=sorted(str(key) for key in payload))


def normalize_grid(shape: GridShape) -> NormalizedPage:
    headers = _header_names(shape.grid.get("headers") or [])
    return NormalizedPage(headers=headers, rows=key_rows(shape.grid.get("rows") or [], headers))


def normalize_header_rows(shape: HeaderRowsShape) -> NormalizedPage:
    headers = _header_names(shape.headers)
    return NormalizedPage(headers=headers, rows=key_rows(shape.rows, headers))


def normalize_array(shape: ArrayShape) -> NormalizedPage:
    headers = _first_item_keys(shape.items)
    return NormalizedPage(headers=headers, rows=key_rows(shape.items, headers))


def normalize_nested(shape: NestedShape) -> NormalizedPage:
    headers = _header_names(shape.headers) if shape.headers else _first_item_keys(shape.items)
    return NormalizedPage(headers=headers, rows=key_rows(shape.items, headers))


def normalize_response(payload: Any) -> tuple[ResponseShape, NormalizedPage]:
    shape = classify_response(payload)
    if isinstance(shape, GridShape):
        return shape, normalize_grid(shape)
    if isinstance(shape, HeaderRowsShape):
        return shape, normalize_header_rows(shape)
    if isinstance(shape, ArrayShape):
        return shape, normalize_array(shape)
    if isinstance(shape, NestedShape):
        return shape, normalize_nested(shape)
    return shape, NormalizedPage(headers=[], rows=[])


def _header_names(headers: list[Any]) -> list[str]:
    names: list[str] = []
    for header in headers:
        if isinstance(header, dict):
            names.append(str(header.get("name") or header.get("column") or ""))
        else:
            names.append("" if header is None else str(header))
    return names


def _first_item_keys(items: list[Any]) -> list[str]:
    if items and isinstance(items[0], dict):
        return [str(key) for key in items[0]]
    return []


def key_rows(rows: list[Any], headers: list[str]) -> list[dict[str, Any]]:
    keyed: list[dict[str, Any]] = []
    for row in rows:
        if isinstance(row, dict):
            keyed.append(row)
        elif isinstance(row, (list, tuple)):
            keyed.append(
                {
                    (headers[index] if index < len(headers) and headers[index] else f"column_{index}"): value
                    for index, value in enumerate(row)
                }
            )
        else:
            keyed.append({headers[0] if headers else "value": row})
    return keyed
