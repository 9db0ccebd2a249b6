"""
app/connectors/base.py

Base connector for a remote DHIS2 instance and shared HTTP mechanics.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from app.config import ExternalHTTPSettings, get_external_http_settings
from app.domain.remote import RemoteHandle
from app.errors import UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_ERROR_BODY_LIMIT = 2000


class BaseConnector:
    """
    Authenticated HTTP access to one remote instance with retry, backoff
    and a minimum interval between requests.
    """

    source: str

    def __init__(
        self,
        *,
        source: str,
        handle: RemoteHandle,
        http_settings: ExternalHTTPSettings | None = None,
        session: requests.Session | None = None,
    ) -> None:
        settings = http_settings or get_external_http_settings()
        self.source = source
        self.handle = handle
        self._session = session or requests.Session()
        self._timeout_seconds = settings.timeout_seconds
        self._max_retries = settings.max_retries
        self._backoff_initial_seconds = settings.backoff_initial_seconds
        self._backoff_multiplier = settings.backoff_multiplier
        self._min_request_interval_seconds = (
            1.0 / settings.rate_limit_per_second if settings.rate_limit_per_second > 0 else 0.0
        )
        self._last_request_monotonic: float = 0.0

    def api_url(self, path: str) -> str:
        return f"{self.handle.api_url}/{path.lstrip('/')}"

    def _request_json(
        self,
        *,
        method: str,
        url: str,
        params: Any = None,
        json_body: Any = None,
    ) -> Any:
        """
        Execute an HTTP request and return parsed JSON with retry support.
        """

        response = self._request(method=method, url=url, params=params, json_body=json_body)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"{self.source}: response was not valid JSON.",
                upstream_status=response.status_code,
                body=response.text[:_ERROR_BODY_LIMIT],
            ) from exc

    def _request(
        self,
        *,
        method: str,
        url: str,
        params: Any = None,
        json_body: Any = None,
    ) -> requests.Response:
        """
        Execute an HTTP request with rate limiting and exponential backoff.

        Raises
        ------
        UpstreamError
            On a non-retryable status, or once retries are exhausted. The
            last HTTP status and response body are attached.
        """

        last_error: Exception | None = None
        last_status: int | None = None
        last_body: str | None = None
        for attempt in range(self._max_retries + 1):
            self._apply_rate_limit()
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    headers=self.handle.headers,
                    timeout=self._timeout_seconds,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                last_status = exc.response.status_code if exc.response is not None else None
                last_body = exc.response.text[:_ERROR_BODY_LIMIT] if exc.response is not None else None
                if last_status not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "Remote request failed source=%s status=%s url=%s error=%s",
                        self.source,
                        last_status,
                        url,
                        exc,
                    )
                    raise UpstreamError(
                        f"{self.source}: remote returned HTTP {last_status}.",
                        upstream_status=last_status,
                        body=last_body,
                    ) from exc
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc
                last_status = None
                last_body = str(exc)

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
            logger.warning(
                "Remote request retry source=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                self.source,
                attempt + 1,
                self._max_retries,
                backoff_seconds,
                url,
            )
            time.sleep(backoff_seconds)

        logger.error(
            "Remote request exhausted retries source=%s url=%s error=%s",
            self.source,
            url,
            last_error,
        )
        raise UpstreamError(
            f"{self.source}: request failed after retries.",
            upstream_status=last_status,
            body=last_body,
        ) from last_error

    def _apply_rate_limit(self) -> None:
        """
        Enforce minimum interval between outbound requests.
        """

        if self._min_request_interval_seconds <= 0:
            return

        now = time.monotonic()
        elapsed = now - self._last_request_monotonic
        remaining = self._min_request_interval_seconds - elapsed
        if remaining > 0:
            time.sleep(remaining)
        self._last_request_monotonic = time.monotonic()
