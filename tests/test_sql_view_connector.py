"""
tests/test_sql_view_connector.py

Pytest unit tests for SqlViewExecutor and the shared HTTP mechanics.

A scripted session returns real ``requests.Response`` objects, so retry
and status handling run unmodified. No network access.

Coverage
--------
- Paging stops on a short page
- Paging stops at the max-pages cap and flags the result as truncated
- Truncated results are not cached; complete ones are
- Cooperative stop between pages
- Preview served from a stale cache entry when the remote fails
- Non-retryable and exhausted-retry failures raise UpstreamError
"""

from __future__ import annotations

import json
from typing import Any, Callable

import pytest
import requests

from app.cache.bounded_cache import BoundedCache
from app.config import ExternalHTTPSettings, RemoteQuerySettings
from app.connectors.sql_view_connector import SqlViewExecutor, SqlViewParams
from app.domain.remote import RemoteHandle
from app.errors import UpstreamError

NO_WAIT = ExternalHTTPSettings(max_retries=0, rate_limit_per_second=0)


def make_response(status_code: int, payload: Any = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = b"" if payload is None else json.dumps(payload).encode("utf-8")
    response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    return response


class ScriptedSession:
    """
    Minimal ``requests.Session`` stand-in. ``handler`` receives
    ``(method, url, params)`` and returns a response.
    """

    def __init__(self, handler: Callable[[str, str, dict[str, str]], requests.Response]) -> None:
        self.handler = handler
        self.calls: list[tuple[str, str, dict[str, str]]] = []

    def request(self, *, method: str, url: str, params: Any = None, **_: Any) -> requests.Response:
        query = dict(params or [])
        self.calls.append((method, url, query))
        response = self.handler(method, url, query)
        response.url = url
        return response


def paged_rows(page_sizes: list[int]) -> Callable[[str, str, dict[str, str]], requests.Response]:
    def handler(method: str, url: str, query: dict[str, str]) -> requests.Response:
        if method == "POST":
            return make_response(200)
        page = int(query["page"])
        count = page_sizes[page - 1] if page <= len(page_sizes) else 0
        rows = [[f"uid{page:02d}{index:06d}", f"Row {page}.{index}"] for index in range(count)]
        return make_response(200, {"listGrid": {"headers": [{"name": "uid"}, {"name": "name"}], "rows": rows}})

    return handler


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def handle() -> RemoteHandle:
    return RemoteHandle.from_basic_auth(base_url="https://play.example.org", username="admin", password="district")


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def cache(clock: Clock) -> BoundedCache:
    return BoundedCache(name="query", max_entries=50, max_bytes=1_000_000, max_age_seconds=60, clock=clock)


def build_executor(
    handle: RemoteHandle,
    cache: BoundedCache,
    session: ScriptedSession,
    *,
    page_size: int = 2,
    max_pages: int = 3,
) -> SqlViewExecutor:
    return SqlViewExecutor(
        handle=handle,
        http_settings=NO_WAIT,
        query_settings=RemoteQuerySettings(page_size=page_size, preview_limit=5, max_pages=max_pages),
        cache=cache,
        session=session,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# execute_all
# ---------------------------------------------------------------------------


class TestExecuteAll:
    def test_short_page_ends_paging(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([2, 1]))
        result = build_executor(handle, cache, session).execute_all("sqlView0001")

        assert result.pages == 2
        assert len(result.rows) == 3
        assert result.rows[0] == {"uid": "uid01000000", "name": "Row 1.0"}
        assert result.headers == ["uid", "name"]
        assert result.truncated is False

    def test_execute_step_runs_before_data_fetch(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([0]))
        build_executor(handle, cache, session).execute_all("sqlView0001")

        method, url, _ = session.calls[0]
        assert method == "POST"
        assert url == "https://play.example.org/api/sqlViews/sqlView0001/execute"
        assert session.calls[1][1] == "https://play.example.org/api/sqlViews/sqlView0001/data"

    def test_page_cap_truncates(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([2] * 10))
        result = build_executor(handle, cache, session, max_pages=3).execute_all("sqlView0001")

        assert result.pages == 3
        assert len(result.rows) == 6
        assert result.truncated is True
        assert len(cache) == 0

    def test_complete_result_is_cached(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([1]))
        executor = build_executor(handle, cache, session)
        executor.execute_all("sqlView0001")
        calls_after_first = len(session.calls)

        second = executor.execute_all("sqlView0001")
        assert second.from_cache is True
        assert len(session.calls) == calls_after_first

    def test_use_cache_false_refetches(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([1]))
        executor = build_executor(handle, cache, session)
        executor.execute_all("sqlView0001")
        second = executor.execute_all("sqlView0001", use_cache=False)
        assert second.from_cache is False
        assert len(session.calls) == 4

    def test_stop_request_returns_partial_result(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([2] * 10))
        executor = build_executor(handle, cache, session, max_pages=10)
        fetched = {"pages": 0}

        def should_stop() -> bool:
            fetched["pages"] += 1
            return fetched["pages"] > 2

        result = executor.execute_all("sqlView0001", should_stop=should_stop)
        assert result.cancelled is True
        assert result.pages == 2
        assert len(cache) == 0

    def test_failed_execute_step_is_ignored(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        rows = paged_rows([1])

        def handler(method: str, url: str, query: dict[str, str]) -> requests.Response:
            if method == "POST":
                return make_response(409, {"message": "not materializable"})
            return rows(method, url, query)

        result = build_executor(handle, cache, ScriptedSession(handler)).execute_all("sqlView0001")
        assert len(result.rows) == 1

    def test_params_are_sent_as_var_and_criteria(self) -> None:
        params = SqlViewParams(variables={"ou": "ImspTQPwCqd"}, criteria={"valueType": "NUMBER"})
        assert params.as_query() == [("var", "ou:ImspTQPwCqd"), ("criteria", "valueType:NUMBER")]


# ---------------------------------------------------------------------------
# preview
# ---------------------------------------------------------------------------


class TestPreview:
    def test_preview_caps_rows(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(paged_rows([5]))
        preview = build_executor(handle, cache, session).preview("sqlView0001", page_size_limit=3)
        assert session.calls[0][2]["pageSize"] == "3"
        assert preview.row_count <= 3

    def test_stale_cache_served_when_remote_fails(
        self, handle: RemoteHandle, cache: BoundedCache, clock: Clock
    ) -> None:
        healthy = True

        def handler(method: str, url: str, query: dict[str, str]) -> requests.Response:
            if healthy:
                return paged_rows([2])(method, url, query)
            return make_response(503, {"message": "down"})

        executor = build_executor(handle, cache, ScriptedSession(handler))
        first = executor.preview("sqlView0001")
        assert first.stale is False

        healthy = False
        clock.now += 3600
        second = executor.preview("sqlView0001")
        assert second.stale is True
        assert second.from_cache is True
        assert second.rows == first.rows

    def test_failure_without_cache_raises(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(lambda method, url, query: make_response(503, {"message": "down"}))
        with pytest.raises(UpstreamError) as exc_info:
            build_executor(handle, cache, session).preview("sqlView0001")
        assert exc_info.value.upstream_status == 503


# ---------------------------------------------------------------------------
# HTTP mechanics
# ---------------------------------------------------------------------------


class TestHttpMechanics:
    def test_client_error_is_not_retried(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        session = ScriptedSession(lambda method, url, query: make_response(404, {"message": "missing"}))
        executor = SqlViewExecutor(
            handle=handle,
            http_settings=ExternalHTTPSettings(max_retries=3, rate_limit_per_second=0),
            cache=cache,
            session=session,  # type: ignore[arg-type]
        )
        with pytest.raises(UpstreamError) as exc_info:
            executor.fetch_page("sqlView0001", params=SqlViewParams(), page=1, page_size=10)
        assert exc_info.value.upstream_status == 404
        assert "missing" in (exc_info.value.body or "")
        assert len(session.calls) == 1

    def test_invalid_json_raises(self, handle: RemoteHandle, cache: BoundedCache) -> None:
        def handler(method: str, url: str, query: dict[str, str]) -> requests.Response:
            response = make_response(200)
            response._content = b"<html>login</html>"
            return response

        executor = build_executor(handle, cache, ScriptedSession(handler))
        with pytest.raises(UpstreamError):
            executor.fetch_page("sqlView0001", params=SqlViewParams(), page=1, page_size=10)

    def test_authorization_header_sent(self, handle: RemoteHandle) -> None:
        assert handle.headers["Authorization"].startswith("Basic ")
        assert handle.api_url == "https://play.example.org/api"
