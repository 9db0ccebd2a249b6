"""
app/schemas package marker.
"""

from app.schemas.dictionary_export import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    CombinedExportRequest,
)
from app.schemas.dictionary_preview import (
    ConvertTableRequest,
    ConvertTableResponse,
    PreviewRequest,
    PreviewResponse,
    SaveFromPreviewRequest,
    SaveFromPreviewResponse,
)
from app.schemas.dictionary_processing import (
    ProcessActionRequest,
    ProcessActionResponse,
    ProcessingOptionsPayload,
    ProcessStatusResponse,
)

__all__ = [
    "CacheInvalidateRequest",
    "CacheInvalidateResponse",
    "CombinedExportRequest",
    "ConvertTableRequest",
    "ConvertTableResponse",
    "PreviewRequest",
    "PreviewResponse",
    "ProcessActionRequest",
    "ProcessActionResponse",
    "ProcessingOptionsPayload",
    "ProcessStatusResponse",
    "SaveFromPreviewRequest",
    "SaveFromPreviewResponse",
]
