"""
app/api/routers package marker.
"""

from app.api.routers.dictionary_export import router as dictionary_export_router
from app.api.routers.dictionary_preview import router as dictionary_preview_router
from app.api.routers.dictionary_processing import router as dictionary_processing_router
from app.api.routers.system import router as system_router

__all__ = [
    "dictionary_export_router",
    "dictionary_preview_router",
    "dictionary_processing_router",
    "system_router",
]
