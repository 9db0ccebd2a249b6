"""
app/connectors/sql_view_connector.py

Execution of remote SQL views with paging, shape normalization and
query-result caching.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import requests

from app.cache.bounded_cache import BoundedCache, get_query_cache
from app.config import ExternalHTTPSettings, RemoteQuerySettings, get_remote_query_settings
from app.connectors.base import BaseConnector
from app.domain.query_result import NormalizedPage, UnknownShape, normalize_response
from app.domain.remote import RemoteHandle
from app.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SqlViewParams:
    """
    ``variables`` become ``var=name:value``; ``criteria`` become ``criteria=column:value``.
    """

    variables: dict[str, str] = field(default_factory=dict)
    criteria: dict[str, str] = field(default_factory=dict)

    def as_query(self) -> list[tuple[str, str]]:
        query = [("var", f"{name}:{value}") for name, value in sorted(self.variables.items())]
        query.extend(("criteria", f"{column}:{value}") for column, value in sorted(self.criteria.items()))
        return query

    def cache_token(self) -> str:
        return json.dumps({"var": self.variables, "criteria": self.criteria}, sort_keys=True)


@dataclass(frozen=True)
class QueryPreview:
    rows: list[dict[str, Any]]
    headers: list[str]
    row_count: int
    elapsed_ms: int
    from_cache: bool = False
    stale: bool = False


@dataclass(frozen=True)
class QueryResult:
    rows: list[dict[str, Any]]
    headers: list[str]
    pages: int
    elapsed_ms: int
    from_cache: bool = False
    cancelled: bool = False
    truncated: bool = False


class SqlViewExecutor(BaseConnector):
    """
    Executes one instance's SQL views.

    Reads go through the query cache unless ``use_cache=False``.
    """

    def __init__(
        self,
        *,
        handle: RemoteHandle,
        http_settings: ExternalHTTPSettings | None = None,
        query_settings: RemoteQuerySettings | None = None,
        cache: BoundedCache | None = None,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(source="sql_view", handle=handle, http_settings=http_settings, session=session)
        self._settings = query_settings or get_remote_query_settings()
        self._cache = cache if cache is not None else get_query_cache()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def preview(
        self,
        sql_view_id: str,
        *,
        params: SqlViewParams | None = None,
        page_size_limit: int | None = None,
        use_cache: bool = True,
    ) -> QueryPreview:
        """
        Fetch a single page capped at ``page_size_limit`` rows.

        If the remote call fails and a cached copy exists (even an expired
        one), the cached copy is returned with ``stale=True``.
        """

        params = params or SqlViewParams()
        limit = max(1, page_size_limit or self._settings.preview_limit)
        cache_key = self.cache_key(sql_view_id, params, mode=f"preview:{limit}")
        started = time.monotonic()

        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return self._preview_from_payload(cached, started, from_cache=True)

        try:
            page = self.fetch_page(sql_view_id, params=params, page=1, page_size=limit)
        except UpstreamError as exc:
            stale = self._cache.get(cache_key, include_expired=True)
            if stale is None:
                raise
            logger.warning(
                "SQL view preview served from stale cache sql_view_id=%s status=%s",
                sql_view_id,
                exc.upstream_status,
            )
            return self._preview_from_payload(stale, started, from_cache=True, stale=True)

        payload = {"headers": page.headers, "rows": page.rows[:limit]}
        self._cache.set(cache_key, payload)
        return self._preview_from_payload(payload, started, from_cache=False)

    def execute_all(
        self,
        sql_view_id: str,
        *,
        params: SqlViewParams | None = None,
        page_size: int | None = None,
        use_cache: bool = True,
        should_stop: Callable[[], bool] | None = None,
    ) -> QueryResult:
        """
        Fetch every page of ``sql_view_id``.

        Paging stops on a short page, an empty page, or the ``max_pages``
        safety cap. ``should_stop`` is polled before each page; a stop
        request returns the rows gathered so far with ``cancelled=True``.
        Any page failure propagates as ``UpstreamError``.
        """

        params = params or SqlViewParams()
        size = max(1, page_size or self._settings.page_size)
        cache_key = self.cache_key(sql_view_id, params, mode=f"all:{size}")
        started = time.monotonic()

        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return QueryResult(
                    rows=cached["rows"],
                    headers=cached["headers"],
                    pages=cached["pages"],
                    elapsed_ms=_elapsed_ms(started),
                    from_cache=True,
                )

        self.refresh_view(sql_view_id)

        rows: list[dict[str, Any]] = []
        headers: list[str] = []
        pages = 0
        truncated = False
        while True:
            if should_stop is not None and should_stop():
                logger.info("SQL view execution stopped sql_view_id=%s pages=%d", sql_view_id, pages)
                return QueryResult(
                    rows=rows,
                    headers=headers,
                    pages=pages,
                    elapsed_ms=_elapsed_ms(started),
                    cancelled=True,
                )

            page = self.fetch_page(sql_view_id, params=params, page=pages + 1, page_size=size)
            pages += 1
            if not headers:
                headers = page.headers
            rows.extend(page.rows)

            if len(page.rows) < size:
                break
            if pages >= self._settings.max_pages:
                truncated = True
                logger.warning(
                    "SQL view paging hit safety cap sql_view_id=%s max_pages=%d rows=%d",
                    sql_view_id,
                    self._settings.max_pages,
                    len(rows),
                )
                break

        logger.info(
            "SQL view executed sql_view_id=%s pages=%d rows=%d elapsed_ms=%d",
            sql_view_id,
            pages,
            len(rows),
            _elapsed_ms(started),
        )
        if not truncated:
            self._cache.set(cache_key, {"headers": headers, "rows": rows, "pages": pages})
        return QueryResult(
            rows=rows,
            headers=headers,
            pages=pages,
            elapsed_ms=_elapsed_ms(started),
            truncated=truncated,
        )

    def refresh_view(self, sql_view_id: str) -> bool:
        """
        Ask the remote to (re)materialize the view. Plain views reject this;
        a failure is logged and ignored.
        """

        try:
            self._request(method="POST", url=self.api_url(f"sqlViews/{sql_view_id}/execute"))
        except UpstreamError as exc:
            logger.warning(
                "SQL view execute step failed, continuing with data fetch sql_view_id=%s status=%s",
                sql_view_id,
                exc.upstream_status,
            )
            return False
        return True

    def fetch_page(
        self,
        sql_view_id: str,
        *,
        params: SqlViewParams,
        page: int,
        page_size: int,
    ) -> NormalizedPage:
        query = params.as_query() + [("page", str(page)), ("pageSize", str(page_size))]
        payload = self._request_json(
            method="GET",
            url=self.api_url(f"sqlViews/{sql_view_id}/data"),
            params=query,
        )
        shape, normalized = normalize_response(payload)
        if isinstance(shape, UnknownShape):
            logger.warning(
                "Unrecognized SQL view response shape sql_view_id=%s keys=%s",
                sql_view_id,
                shape.keys,
            )
        return normalized

    def cache_key(self, sql_view_id: str, params: SqlViewParams, *, mode: str) -> str:
        return f"sqlview:{self.handle.api_url}:{sql_view_id}:{mode}:{params.cache_token()}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _preview_from_payload(
        payload: dict[str, Any],
        started: float,
        *,
        from_cache: bool,
        stale: bool = False,
    ) -> QueryPreview:
        rows = payload["rows"]
        return QueryPreview(
            rows=rows,
            headers=payload["headers"],
            row_count=len(rows),
            elapsed_ms=_elapsed_ms(started),
            from_cache=from_cache,
            stale=stale,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
