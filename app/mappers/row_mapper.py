"""
app/mappers/row_mapper.py

Turns loosely-shaped SQL view rows into variable candidates.

Identifier and name lookup compare field names case- and
underscore-insensitively, so ``DATA_ELEMENT_ID``, ``data_element_id`` and
``dataElementId`` are the same field.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Sequence

from app.errors import MappingError
from app.mappers.api_urls import UID_PATTERN

COLUMN_SAMPLE_SIZE = 10
UID_LENGTH = 11
UNNAMED = "Unnamed"

PRIMARY_ID_FIELDS: tuple[str, ...] = (
    "data_element_id",
    "indicator_id",
    "program_indicator_id",
    "uid",
    "id",
)
SECONDARY_ID_FIELDS: tuple[str, ...] = (
    "dataElementId",
    "indicatorId",
    "programIndicatorId",
    "dataElementGroupId",
    "indicatorGroupId",
)
NAME_FIELDS: tuple[str, ...] = (
    "name",
    "displayName",
    "dataElementName",
    "indicatorName",
    "description",
    "title",
)

_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


@dataclass(frozen=True)
class MappedRow:
    identifier: str
    name: str
    quality_score: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class ColumnProfile:
    data_type: str
    non_empty_count: int
    total_count: int
    completeness: int
    sample_values: list[Any] = field(default_factory=list)
    unique_values: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataType": self.data_type,
            "nonEmptyCount": self.non_empty_count,
            "totalCount": self.total_count,
            "completeness": self.completeness,
            "sampleValues": self.sample_values,
            "uniqueValues": self.unique_values,
        }


def _field_key(name: str) -> str:
    return name.replace("_", "").lower()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _lookup(row: dict[str, Any], candidates: Sequence[str]) -> list[Any]:
    by_key: dict[str, Any] = {}
    for key, value in row.items():
        by_key.setdefault(_field_key(str(key)), value)
    return [by_key[_field_key(name)] for name in candidates if _field_key(name) in by_key]


def _as_uid(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    return candidate if UID_PATTERN.match(candidate) else None


def detect_columns(rows: Sequence[Any], sample_size: int = COLUMN_SAMPLE_SIZE) -> list[str]:
    """
    Sorted union of keys over the first ``sample_size`` dict rows.
    """

    keys: set[str] = set()
    for row in rows[:sample_size]:
        if isinstance(row, dict):
            keys.update(str(key) for key in row)
    return sorted(keys)


def extract_identifier(row: dict[str, Any]) -> str:
    """
    Find the remote UID in ``row``.

    Well-known identifier fields are tried first, then alternate names,
    then every value in the row.

    Raises
    ------
    MappingError
        If no value has the 11-character alphanumeric shape.
    """

    for value in _lookup(row, PRIMARY_ID_FIELDS):
        uid = _as_uid(value)
        if uid:
            return uid
    for value in _lookup(row, SECONDARY_ID_FIELDS):
        uid = _as_uid(value)
        if uid:
            return uid
    for value in row.values():
        uid = _as_uid(value)
        if uid:
            return uid
    raise MappingError(f"No valid UID found in fields: {', '.join(str(key) for key in row) or '(none)'}")


def extract_name(row: dict[str, Any], identifier: str | None = None) -> str:
    for value in _lookup(row, NAME_FIELDS):
        if isinstance(value, str) and value.strip():
            return value.strip()
    for value in row.values():
        if isinstance(value, str):
            text = value.strip()
            if len(text) > UID_LENGTH and text != identifier:
                return text
    return UNNAMED


def completeness_score(row: dict[str, Any]) -> int:
    """
    ``round(100 * non_empty / total)``; an empty row scores 0.
    """

    if not row:
        return 0
    non_empty = sum(1 for value in row.values() if not _is_empty(value))
    return _clamp_score(100 * non_empty / len(row))


def map_row(row: Any, columns: Sequence[str] | None = None) -> MappedRow:
    """
    Map one row into a variable candidate. ``columns`` restricts the
    payload to the given keys when supplied.
    """

    if not isinstance(row, dict):
        raise MappingError(f"Row is not an object: {type(row).__name__}")

    payload = {column: row.get(column) for column in columns} if columns else dict(row)
    identifier = extract_identifier(payload)
    return MappedRow(
        identifier=identifier,
        name=extract_name(payload, identifier),
        quality_score=completeness_score(payload),
        payload=payload,
    )


def structure_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def structure_rows(rows: Sequence[Any], columns: Sequence[str]) -> list[dict[str, str]]:
    """
    Project every row onto ``columns`` with string-only cells.
    """

    structured: list[dict[str, str]] = []
    for row in rows:
        source = row if isinstance(row, dict) else {}
        structured.append({column: structure_value(source.get(column)) for column in columns})
    return structured


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    try:
        return math.isfinite(float(str(value)))
    except ValueError:
        return False


def _is_date(value: Any) -> bool:
    match = _DATE_PATTERN.search(str(value))
    if match is None:
        return False
    try:
        date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return False
    return True


def _is_boolean(value: Any) -> bool:
    return isinstance(value, bool) or value in {"true", "false"}


def detect_data_type(values: Sequence[Any]) -> str:
    """
    ``number``, ``date``, ``boolean`` or ``text``. Columns with no
    non-empty values are text.
    """

    if not values:
        return "text"
    if all(_is_number(value) for value in values):
        return "number"
    if all(_is_date(value) for value in values):
        return "date"
    if all(_is_boolean(value) for value in values):
        return "boolean"
    return "text"


def column_metadata(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> dict[str, ColumnProfile]:
    total = len(rows)
    profiles: dict[str, ColumnProfile] = {}
    for column in columns:
        values = [row.get(column) for row in rows if not _is_empty(row.get(column))]
        distinct = {json.dumps(value, sort_keys=True, default=str) for value in values}
        profiles[column] = ColumnProfile(
            data_type=detect_data_type(values),
            non_empty_count=len(values),
            total_count=total,
            completeness=_round_half_up(100 * len(values) / total) if total else 0,
            sample_values=values[:3],
            unique_values=len(distinct),
        )
    return profiles


def column_quality(profile: ColumnProfile) -> float:
    """
    Completeness up to 40 points, type consistency up to 30, uniqueness up to 30.
    """

    score = profile.completeness / 100 * 40
    ratio = profile.unique_values / profile.total_count if profile.total_count else 0.0
    if profile.data_type != "text":
        score += 30
    elif ratio > 0.1:
        score += 15
    if ratio > 0.8:
        score += 30
    elif ratio > 0.5:
        score += 20
    elif ratio > 0.2:
        score += 10
    return min(score, 100.0)


def weighted_quality_score(profiles: dict[str, ColumnProfile]) -> int:
    if not profiles:
        return 0
    scores = [column_quality(profile) for profile in profiles.values()]
    return _clamp_score(sum(scores) / len(scores))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp_score(value: float) -> int:
    return max(0, min(100, _round_half_up(value)))
