"""
app/connectors/analytics_connector.py

Analytics and metadata reads for individual variables.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from app.config import ExternalHTTPSettings
from app.connectors.base import BaseConnector
from app.domain.remote import RemoteHandle
from app.mappers.api_urls import derive_urls

logger = logging.getLogger(__name__)


class AnalyticsConnector(BaseConnector):
    """
    Fetches the analytics grid and the metadata object for one variable.
    """

    def __init__(
        self,
        *,
        handle: RemoteHandle,
        http_settings: ExternalHTTPSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(source="analytics", handle=handle, http_settings=http_settings, session=session)

    def fetch_analytics(
        self,
        uid: str,
        metadata_type: str,
        *,
        period: str,
        org_unit: str,
    ) -> dict[str, Any]:
        urls = derive_urls(uid, metadata_type, self.handle.base_url, period=period, org_unit=org_unit)
        payload = self._request_json(method="GET", url=urls.analytics)
        if not isinstance(payload, dict):
            logger.warning("Analytics response was not an object uid=%s", uid)
            return {"headers": [], "rows": []}
        return payload

    def fetch_metadata(self, uid: str, metadata_type: str) -> dict[str, Any]:
        urls = derive_urls(uid, metadata_type, self.handle.base_url)
        payload = self._request_json(method="GET", url=urls.metadata)
        return payload if isinstance(payload, dict) else {}
