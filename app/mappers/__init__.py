"""
app/mappers package marker.
"""

from app.mappers.api_urls import ApiUrlSet, derive_urls, is_canonical_uid
from app.mappers.row_mapper import (
    ColumnProfile,
    MappedRow,
    column_metadata,
    detect_columns,
    map_row,
    structure_rows,
    weighted_quality_score,
)

__all__ = [
    "ApiUrlSet",
    "ColumnProfile",
    "MappedRow",
    "column_metadata",
    "derive_urls",
    "detect_columns",
    "is_canonical_uid",
    "map_row",
    "structure_rows",
    "weighted_quality_score",
]
