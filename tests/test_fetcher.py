import json

import httpx
import pytest

from linkscan.errors import UpstreamBlocked, UpstreamTransient
from linkscan.fetcher import DirectFetcher, FetchResult, RenderFetcher, detect_block
from linkscan.monitoring.metrics_server import FETCH_FAILURES


def _fetcher(handler, **kwargs) -> DirectFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DirectFetcher(client=client, **kwargs)


@pytest.mark.asyncio
async def test_fetch_returns_html_body_with_browser_headers():
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers.get("User-Agent")
        seen["accept"] = request.headers.get("Accept")
        return httpx.Response(
            status_code=200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            text="<html><body>Hello</body></html>",
        )

    fetcher = _fetcher(handler, user_agent="TestBrowser/1.0")
    async with fetcher:
        result = await fetcher.fetch("https://example.com")

    assert isinstance(result, FetchResult)
    assert result.skipped is False
    assert "Hello" in result.content
    assert seen["ua"] == "TestBrowser/1.0"
    assert seen["accept"].startswith("text/html")


@pytest.mark.asyncio
async def test_fetch_skips_non_html_content():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, headers={"Content-Type": "application/json"}, json={"ok": True})

    async with _fetcher(handler) as fetcher:
        result = await fetcher.fetch("https://example.com/api")

    assert result.skipped is True
    assert result.skip_reason == "non_html_content"


@pytest.mark.asyncio
async def test_fetch_skips_large_bodies():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, headers={"Content-Type": "text/html"}, content=b"x" * 50)

    async with _fetcher(handler, max_download_bytes=10) as fetcher:
        result = await fetcher.fetch("https://example.com/large")

    assert result.skipped is True
    assert result.skip_reason == "body_too_large"


@pytest.mark.asyncio
async def test_forbidden_status_is_blocked():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=403, headers={"Content-Type": "text/html"}, text="Forbidden")

    before = FETCH_FAILURES.labels(strategy="direct", kind="blocked")._value.get()

    async with _fetcher(handler) as fetcher:
        with pytest.raises(UpstreamBlocked) as excinfo:
            await fetcher.fetch("https://example.com")

    assert excinfo.value.status_code == 403
    assert "protected" in excinfo.value.user_message
    assert FETCH_FAILURES.labels(strategy="direct", kind="blocked")._value.get() == before + 1


@pytest.mark.asyncio
async def test_challenge_page_is_blocked_even_with_200():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code=200,
            headers={"Content-Type": "text/html"},
            text="<html><head><title>Just a moment...</title></head></html>",
        )

    async with _fetcher(handler) as fetcher:
        with pytest.raises(UpstreamBlocked):
            await fetcher.fetch("https://example.com")


@pytest.mark.asyncio
async def test_server_error_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=500, headers={"Content-Type": "text/html"}, text="oops")

    async with _fetcher(handler) as fetcher:
        with pytest.raises(UpstreamTransient) as excinfo:
            await fetcher.fetch("https://example.com")

    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_connection_error_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _fetcher(handler) as fetcher:
        with pytest.raises(UpstreamTransient) as excinfo:
            await fetcher.fetch("https://example.com")

    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_fetch_without_client_fails():
    with pytest.raises(RuntimeError):
        await DirectFetcher().fetch("https://example.com")


@pytest.mark.asyncio
async def test_render_fetcher_posts_navigation_payload():
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["token"] = request.url.params.get("token")
        seen["payload"] = json.loads(request.content)
        return httpx.Response(status_code=200, text="<html><a href='https://x.org'>x</a></html>")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = RenderFetcher(
        endpoint="https://render.test/content", token="secret", navigation_timeout=30, client=client
    )
    async with fetcher:
        result = await fetcher.fetch("https://spa.example.com")

    assert seen["method"] == "POST"
    assert seen["token"] == "secret"
    assert seen["payload"] == {
        "url": "https://spa.example.com",
        "gotoOptions": {"waitUntil": "networkidle2", "timeout": 30000},
    }
    assert result.url == "https://spa.example.com"
    assert "x.org" in result.content


@pytest.mark.asyncio
async def test_render_fetcher_service_error_is_transient():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=429, text="quota")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with RenderFetcher(endpoint="https://render.test/content", token="t", client=client) as fetcher:
        with pytest.raises(UpstreamTransient):
            await fetcher.fetch("https://spa.example.com")


def test_detect_block_heuristics():
    assert detect_block(429, {}) == "HTTP 429"
    assert detect_block(200, {"cf-mitigated": "challenge"}) is not None
    assert detect_block(503, {"server": "cloudflare"}) is not None
    assert detect_block(503, {"server": "nginx"}) is None
    assert detect_block(200, {}, "<html>" + "x" * 70_000 + "cf_chl_opt</html>") is None
