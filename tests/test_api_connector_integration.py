"""
Integration tests for the REST API connector.

Runs the connector against a local aiohttp application:
- Offset and cursor pagination end to end
- Incremental sync parameters
- Transient 5xx recovery, persistent 5xx exhaustion, 401 and 429 handling
- Authentication header shaping
- Health checks and connection validation
"""

from base64 import b64encode
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from fastrag.config.settings import ConnectorSettings
from fastrag.sync.connectors import ConnectorFactory
from fastrag.sync.connectors.api.rest_connector import APIConnector, query_items
from fastrag.sync.connectors.base import ConnectionStatus, Connector
from fastrag.sync.errors import DataSourceError, ErrorCode
from fastrag.sync.models import (
    Credentials,
    DataSource,
    DataSourceConfig,
    DataSourceStatus,
    DataSourceType,
    PaginationConfig,
    PaginationType,
)

API_KEY = "secret-key"
TOTAL_DOCS = 25


def documents(start: int, stop: int):
    return [
        {"id": f"doc-{i}", "title": f"Doc {i}", "content": f"Body of document {i}"}
        for i in range(start, stop)
    ]


def is_probe(request: web.Request) -> bool:
    return request.query.get("limit") == "1"


def record(request: web.Request) -> None:
    state = request.app["state"]
    state["hits"].append((request.path, dict(request.query)))
    state["headers"] = dict(request.headers)


async def offset_docs(request: web.Request) -> web.Response:
    record(request)
    if request.headers.get("X-API-Key") != API_KEY:
        return web.json_response({"error": "unauthorized"}, status=401)

    limit = int(request.query.get("limit", 10))
    offset = int(request.query.get("offset", 0))
    return web.json_response({
        "items": documents(offset, min(offset + limit, TOTAL_DOCS)),
        "total": TOTAL_DOCS,
        "offset": offset,
        "limit": limit,
    })


async def cursor_docs(request: web.Request) -> web.Response:
    record(request)
    pages = {None: ("c1", 0), "c1": ("c2", 10), "c2": (None, 20)}
    next_cursor, start = pages[request.query.get("cursor")]
    return web.json_response({
        "data": documents(start, min(start + 10, TOTAL_DOCS)),
        "next_cursor": next_cursor,
    })


async def flaky(request: web.Request) -> web.Response:
    record(request)
    state = request.app["state"]
    if not is_probe(request):
        state["data_calls"] += 1
        if state["data_calls"] <= 2:
            return web.json_response({"error": "unavailable"}, status=503)
    return web.json_response({"items": documents(0, 5), "total": 5, "offset": 0, "limit": 10})


async def unavailable(request: web.Request) -> web.Response:
    record(request)
    if is_probe(request):
        return web.json_response([])
    return web.json_response({"error": "unavailable"}, status=503)


async def always_down(request: web.Request) -> web.Response:
    record(request)
    return web.json_response({"error": "unavailable"}, status=503)


async def limited(request: web.Request) -> web.Response:
    record(request)
    state = request.app["state"]
    if not is_probe(request):
        state["data_calls"] += 1
        if state["data_calls"] == 1:
            return web.json_response({"error": "slow down"}, status=429, headers={"Retry-After": "0"})
    return web.json_response(documents(0, 3))


async def garbage(request: web.Request) -> web.Response:
    record(request)
    if is_probe(request):
        return web.json_response([])
    return web.Response(text="<html>maintenance</html>", content_type="text/html")


async def echo_auth(request: web.Request) -> web.Response:
    record(request)
    return web.json_response([{
        "id": "auth",
        "title": "auth",
        "text": request.headers.get("Authorization", ""),
        "api_key": request.headers.get("X-API-Key"),
    }])


async def echo_query(request: web.Request) -> web.Response:
    record(request)
    return web.json_response([{
        "id": "query",
        "title": "query",
        "text": ",".join(request.query.getall("tag", [])),
        "active": request.query.get("active"),
    }])


@pytest_asyncio.fixture
async def api_server():
    """Serve the test application on a local port."""
    app = web.Application()
    app["state"] = {"hits": [], "headers": {}, "data_calls": 0}
    app.router.add_get("/docs", offset_docs)
    app.router.add_get("/cursor", cursor_docs)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/unavailable", unavailable)
    app.router.add_get("/down", always_down)
    app.router.add_get("/limited", limited)
    app.router.add_get("/garbage", garbage)
    app.router.add_get("/echo-auth", echo_auth)
    app.router.add_get("/echo-query", echo_query)

    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def fast_settings():
    return ConnectorSettings(
        retry_attempts=3,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        requests_per_second=1000,
    )


def make_source(server: TestServer, path: str, **overrides) -> DataSource:
    config = {
        "api_endpoint": str(server.make_url(path)),
        "credentials": Credentials(api_key=API_KEY),
        "pagination": PaginationConfig(type=PaginationType.OFFSET),
        "batch_size": 10,
    }
    config.update(overrides)
    return DataSource(name="Test API", type=DataSourceType.API, config=DataSourceConfig(**config))


def data_hits(server: TestServer, path: str):
    return [q for p, q in server.app["state"]["hits"] if p == path and q.get("limit") != "1"]


class TestAPISync:
    """End-to-end sync scenarios."""

    @pytest.mark.asyncio
    async def test_offset_sync_fetches_three_pages(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")
        connector = APIConnector(source, settings=fast_settings)

        try:
            result = await connector.sync()
        finally:
            await connector.disconnect()

        assert result.success is True
        assert result.documents_processed == TOTAL_DOCS
        assert result.documents_added == TOTAL_DOCS
        assert result.documents_updated == 0
        assert result.metadata["requests"] == 3
        assert result.metadata["truncated"] is False

        hits = data_hits(api_server, "/docs")
        assert len(hits) == 3
        assert [h.get("offset") for h in hits] == [None, "10", "20"]

        assert source.status == DataSourceStatus.ACTIVE
        assert source.document_count == TOTAL_DOCS
        assert source.last_sync is not None
        assert source.error_message is None

    @pytest.mark.asyncio
    async def test_documents_carry_source_metadata(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")

        async with APIConnector(source, settings=fast_settings) as connector:
            contents = await connector.get_content()

        assert [c.id for c in contents] == [f"doc-{i}" for i in range(TOTAL_DOCS)]
        first = contents[0]
        assert first.title == "Doc 0"
        assert first.text == "Body of document 0"
        assert first.source_id == source.id
        assert first.metadata["source_type"] == "api"
        assert first.metadata["api_endpoint"] == source.config.api_endpoint
        assert "fetched_at" in first.metadata

    @pytest.mark.asyncio
    async def test_incremental_sync_sends_since(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")
        source.last_sync = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        connector = APIConnector(source, settings=fast_settings)

        try:
            await connector.sync(incremental=True)
        finally:
            await connector.disconnect()

        hits = data_hits(api_server, "/docs")
        assert all(h["since"] == "2026-01-02T03:04:05.000Z" for h in hits)
        assert source.last_sync != datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_full_sync_omits_since(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")
        source.last_sync = datetime(2026, 1, 1, tzinfo=timezone.utc)
        connector = APIConnector(source, settings=fast_settings)

        try:
            await connector.sync(incremental=False)
        finally:
            await connector.disconnect()

        assert all("since" not in h for h in data_hits(api_server, "/docs"))

    @pytest.mark.asyncio
    async def test_cursor_pagination(self, api_server, fast_settings):
        source = make_source(
            api_server, "/cursor",
            pagination=PaginationConfig(type=PaginationType.CURSOR)
        )

        async with APIConnector(source, settings=fast_settings) as connector:
            result = await connector.sync()

        assert result.documents_processed == TOTAL_DOCS
        hits = data_hits(api_server, "/cursor")
        assert [h.get("cursor") for h in hits] == [None, "c1", "c2"]

    @pytest.mark.asyncio
    async def test_request_cap_truncates(self, api_server):
        settings = ConnectorSettings(requests_per_second=1000, max_pagination_requests=2)
        source = make_source(api_server, "/docs")

        async with APIConnector(source, settings=settings) as connector:
            result = await connector.sync()

        assert result.success is True
        assert result.documents_processed == 20
        assert result.metadata["truncated"] is True


class TestAPIFailures:
    """Failure classification and retry behavior over HTTP."""

    @pytest.mark.asyncio
    async def test_transient_server_errors_are_retried(self, api_server, fast_settings):
        source = make_source(api_server, "/flaky")
        connector = APIConnector(source, settings=fast_settings)

        try:
            await connector.connect()
            connector.reset_metrics()
            result = await connector.sync()
        finally:
            await connector.disconnect()

        assert result.success is True
        assert result.documents_processed == 5
        metrics = connector.get_metrics()
        assert metrics.total_queries == 3
        assert metrics.failed_queries == 2
        assert metrics.successful_queries == 1

    @pytest.mark.asyncio
    async def test_persistent_server_errors_fail_the_sync(self, api_server, fast_settings):
        source = make_source(api_server, "/unavailable")
        connector = APIConnector(source, settings=fast_settings)

        try:
            result = await connector.sync()
        finally:
            await connector.disconnect()

        assert result.success is False
        assert result.metadata["error_code"] == ErrorCode.MAX_RETRIES_EXCEEDED.value
        assert result.errors[0].startswith("MAX_RETRIES_EXCEEDED")
        assert len(data_hits(api_server, "/unavailable")) == 3
        assert source.status == DataSourceStatus.ERROR
        assert source.last_sync is None

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retried(self, api_server, fast_settings):
        source = make_source(api_server, "/docs", credentials=Credentials(api_key="wrong"))
        connector = APIConnector(source, settings=fast_settings)

        with pytest.raises(DataSourceError) as exc_info:
            await connector.sync()

        assert exc_info.value.code == ErrorCode.AUTH_ERROR
        assert exc_info.value.status_code == 401
        assert len(api_server.app["state"]["hits"]) == 1
        assert connector.status == ConnectionStatus.DISCONNECTED
        assert source.last_sync is None
        assert source.status == DataSourceStatus.ERROR

    @pytest.mark.asyncio
    async def test_unavailable_endpoint_fails_connect(self, api_server, fast_settings):
        source = make_source(api_server, "/down")
        connector = APIConnector(source, settings=fast_settings)

        with pytest.raises(DataSourceError) as exc_info:
            await connector.connect()

        assert exc_info.value.code == ErrorCode.CONNECTION_ERROR
        assert len(api_server.app["state"]["hits"]) == 3
        assert connector.get_connection_status() is False

    @pytest.mark.asyncio
    async def test_rate_limited_request_is_retried(self, api_server, fast_settings):
        source = make_source(api_server, "/limited", pagination=None)

        async with APIConnector(source, settings=fast_settings) as connector:
            result = await connector.sync()

        assert result.success is True
        assert result.documents_processed == 3
        assert len(data_hits(api_server, "/limited")) == 2

    @pytest.mark.asyncio
    async def test_unparseable_body_fails_without_retry(self, api_server, fast_settings):
        source = make_source(api_server, "/garbage")

        async with APIConnector(source, settings=fast_settings) as connector:
            result = await connector.sync()

        assert result.success is False
        assert result.metadata["error_code"] == ErrorCode.PARSE_ERROR.value
        assert len(data_hits(api_server, "/garbage")) == 1

    @pytest.mark.asyncio
    async def test_unreachable_host(self, fast_settings):
        source = DataSource(
            name="Nowhere",
            type=DataSourceType.API,
            config=DataSourceConfig(
                api_endpoint=f"http://127.0.0.1:{unused_port()}/docs",
                credentials=Credentials(token="t"),
            )
        )
        connector = APIConnector(source, settings=fast_settings)

        with pytest.raises(DataSourceError) as exc_info:
            await connector.connect()

        assert exc_info.value.code == ErrorCode.CONNECTION_ERROR


class TestAPIAuthHeaders:
    """Authentication header shaping."""

    @pytest.mark.asyncio
    async def test_api_key_wins(self, api_server, fast_settings):
        source = make_source(
            api_server, "/echo-auth",
            credentials=Credentials(api_key="k", token="t", username="u", password="p"),
            pagination=None
        )

        async with APIConnector(source, settings=fast_settings) as connector:
            [content] = await connector.get_content()

        assert content.metadata["api_key"] == "k"
        assert content.metadata["text"] == ""

    @pytest.mark.asyncio
    async def test_bearer_token(self, api_server, fast_settings):
        source = make_source(
            api_server, "/echo-auth",
            credentials=Credentials(token="tok-1", username="u", password="p"),
            pagination=None
        )

        async with APIConnector(source, settings=fast_settings) as connector:
            [content] = await connector.get_content()

        assert content.text == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_basic_auth(self, api_server, fast_settings):
        source = make_source(
            api_server, "/echo-auth",
            credentials=Credentials(username="alice", password="pw"),
            pagination=None
        )

        async with APIConnector(source, settings=fast_settings) as connector:
            [content] = await connector.get_content()

        assert content.text == "Basic " + b64encode(b"alice:pw").decode()

    @pytest.mark.asyncio
    async def test_default_and_custom_headers(self, api_server, fast_settings):
        source = make_source(api_server, "/docs", headers={"X-Tenant": "acme"}, pagination=None)

        async with APIConnector(source, settings=fast_settings) as connector:
            await connector.get_content()

        headers = api_server.app["state"]["headers"]
        assert headers["User-Agent"] == fast_settings.user_agent
        assert headers["Accept"] == "application/json"
        assert headers["X-Tenant"] == "acme"


class TestAPIQueryParams:
    """Query parameter encoding."""

    def test_lists_become_repeated_keys(self):
        items = query_items({"tag": ["a", "b"], "active": True, "limit": 10, "skip": None})

        assert items == [("tag", "a"), ("tag", "b"), ("active", "true"), ("limit", 10)]

    @pytest.mark.asyncio
    async def test_list_query_params_reach_the_server(self, api_server, fast_settings):
        source = make_source(
            api_server,
            "/echo-query",
            query_params={"tag": ["news", "sports"], "active": True}
        )

        async with APIConnector(source, settings=fast_settings) as connector:
            contents = await connector.get_content()

        assert contents[0].text == "news,sports"
        assert contents[0].metadata["active"] == "true"


class TestAPIRateLimitedProbe:
    """Probes share the outbound rate limit."""

    @pytest.mark.asyncio
    async def test_connect_takes_a_rate_limit_slot(self, api_server, fast_settings):
        connector = APIConnector(make_source(api_server, "/docs"), settings=fast_settings)

        await connector.connect()
        await connector.disconnect()

        assert connector.rate_limiter.recent_requests == 1

    @pytest.mark.asyncio
    async def test_health_check_waits_for_the_limiter(self, api_server, fast_settings):
        connector = APIConnector(
            make_source(api_server, "/docs", requests_per_second=1),
            settings=fast_settings
        )

        first = await connector.health_check()
        second = await connector.health_check()

        assert first.is_healthy and second.is_healthy
        assert second.response_time_ms >= 900


class TestAPIHealth:
    """Health checks, validation and lifecycle."""

    @pytest.mark.asyncio
    async def test_health_check_without_connecting(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")
        connector = APIConnector(source, settings=fast_settings)

        health = await connector.health_check()

        assert health.is_healthy is True
        assert health.source_id == source.id
        assert health.response_time_ms >= 0
        assert connector.status == ConnectionStatus.DISCONNECTED
        assert connector.get_last_health_check() == health.last_check

    @pytest.mark.asyncio
    async def test_unhealthy_endpoint_is_probed_once(self, api_server, fast_settings):
        source = make_source(api_server, "/down")
        connector = APIConnector(source, settings=fast_settings)

        health = await connector.health_check()

        assert health.is_healthy is False
        assert health.error_count == 1
        assert health.last_error
        assert len(api_server.app["state"]["hits"]) == 1

    @pytest.mark.asyncio
    async def test_validate_connection(self, api_server, fast_settings):
        good = APIConnector(make_source(api_server, "/docs"), settings=fast_settings)
        bad = APIConnector(
            make_source(api_server, "/docs", credentials=Credentials(api_key="nope")),
            settings=fast_settings
        )

        assert await good.validate_connection() is True
        assert await bad.validate_connection() is False

    @pytest.mark.asyncio
    async def test_context_manager_connects_and_disconnects(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")

        async with APIConnector(source, settings=fast_settings) as connector:
            assert connector.get_connection_status() is True
            assert connector.status == ConnectionStatus.CONNECTED

        assert connector.get_connection_status() is False

    @pytest.mark.asyncio
    async def test_get_data_source_is_a_copy(self, api_server, fast_settings):
        source = make_source(api_server, "/docs")
        connector = APIConnector(source, settings=fast_settings)

        copy = connector.get_data_source()
        copy.document_count = 99

        assert source.document_count == 0


class TestAPIConstruction:
    """Construction-time validation and factory registration."""

    def test_invalid_config_is_rejected(self):
        source = DataSource(
            name="Broken",
            type=DataSourceType.API,
            config=DataSourceConfig(api_endpoint="https://api.example.com")
        )

        with pytest.raises(DataSourceError) as exc_info:
            APIConnector(source)

        assert exc_info.value.code == ErrorCode.INVALID_CONFIG

    def test_factory_creates_api_connector(self):
        source = DataSource(
            name="Factory",
            type=DataSourceType.API,
            config=DataSourceConfig(
                api_endpoint="https://api.example.com",
                credentials=Credentials(token="t")
            )
        )

        connector = ConnectorFactory.create(source)

        assert isinstance(connector, APIConnector)
        assert isinstance(connector, Connector)
        assert set(ConnectorFactory.list_types()) >= {"api", "file", "database"}
