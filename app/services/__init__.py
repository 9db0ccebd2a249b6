"""
app/services package marker.
"""

from app.services.credential_service import CredentialService
from app.services.export_service import ExportAggregator, get_export_aggregator
from app.services.preview_service import PreviewService, get_preview_service
from app.services.processing_coordinator import (
    JobRegistry,
    ProcessingCoordinator,
    get_processing_coordinator,
)

__all__ = [
    "CredentialService",
    "ExportAggregator",
    "get_export_aggregator",
    "JobRegistry",
    "PreviewService",
    "get_preview_service",
    "ProcessingCoordinator",
    "get_processing_coordinator",
]
