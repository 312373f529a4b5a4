from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx
from loguru import logger

from linkscan.errors import UpstreamBlocked, UpstreamError, UpstreamTransient
from linkscan.monitoring.metrics_server import (
    FETCH_FAILURES,
    FETCH_LATENCY,
    FETCH_REQUESTS,
)
from linkscan.utils.config_loader import DEFAULT_USER_AGENT


MAX_REDIRECTS = 10

BROWSER_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Referer": "https://www.google.com/",
}

BLOCKED_STATUSES = {401, 403, 407, 429, 451}

CHALLENGE_MARKERS = (
    "<title>just a moment...</title>",
    "<title>attention required! | cloudflare</title>",
    "cf-browser-verification",
    "cf_chl_opt",
    "_incapsula_resource",
    "px-captcha",
    "ddos protection by",
)

# challenge pages are small; large documents that mention a marker are real pages
CHALLENGE_SCAN_BYTES = 64_000


@dataclass
class FetchResult:
    url: str
    status_code: int
    content: str
    content_type: str
    skipped: bool = False
    skip_reason: Optional[str] = None


def is_challenge_page(html: str) -> bool:
    if not html or len(html) > CHALLENGE_SCAN_BYTES:
        return False
    lowered = html.lower()
    return any(marker in lowered for marker in CHALLENGE_MARKERS)


def detect_block(status_code: int, headers: Mapping[str, str], html: str = "") -> Optional[str]:
    """Reason string when a response looks like bot protection, else None."""
    if status_code in BLOCKED_STATUSES:
        return f"HTTP {status_code}"

    if (headers.get("cf-mitigated") or "").lower() == "challenge":
        return "challenge (cf-mitigated)"

    server = (headers.get("server") or "").lower()
    if status_code == 503 and ("cloudflare" in server or "ddos-guard" in server):
        return f"HTTP 503 from {server}"

    if is_challenge_page(html):
        return "challenge page"

    return None


class BaseFetcher:
    """Shared client lifecycle and metrics; subclasses implement ``_request``."""

    strategy = "base"

    def __init__(self, *, timeout: float, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "BaseFetcher":
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.timeout),
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_client and self.client is not None:
            await self.client.aclose()
            self.client = None

    async def fetch(self, url: str) -> FetchResult:
        if self.client is None:
            raise RuntimeError("HTTP client is not initialized")

        FETCH_REQUESTS.labels(strategy=self.strategy).inc()
        start = time.perf_counter()
        try:
            return await self._request(url)
        except UpstreamError as exc:
            FETCH_FAILURES.labels(strategy=self.strategy, kind=exc.kind).inc()
            raise
        finally:
            FETCH_LATENCY.labels(strategy=self.strategy).observe(time.perf_counter() - start)

    async def _request(self, url: str) -> FetchResult:
        raise NotImplementedError


class DirectFetcher(BaseFetcher):
    """Plain HTTP GET with browser-like headers. Fast, blind to client-side rendering."""

    strategy = "direct"

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 20.0,
        max_download_bytes: int = 5_000_000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout=timeout, client=client)
        self.user_agent = user_agent
        self.max_download_bytes = max_download_bytes

    async def _request(self, url: str) -> FetchResult:
        try:
            resp = await self.client.get(
                url,
                headers={"User-Agent": self.user_agent, **BROWSER_HEADERS},
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTransient(f"Timed out fetching {url}", url=url) from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransient(f"Request to {url} failed: {exc!r}", url=url) from exc

        content_type = (resp.headers.get("Content-Type") or "").lower()
        body = resp.content or b""
        is_html = "html" in content_type or not content_type

        reason = detect_block(resp.status_code, resp.headers, resp.text if is_html else "")
        if reason:
            raise UpstreamBlocked(
                f"Blocked fetching {url}: {reason}", url=url, status_code=resp.status_code
            )

        if not resp.is_success:
            raise UpstreamTransient(
                f"Fetch failed with status {resp.status_code}",
                url=url,
                status_code=resp.status_code,
            )

        final_url = str(resp.url)

        if len(body) > self.max_download_bytes:
            logger.info(f"[fetcher] Skipping {url}: body of {len(body)} bytes")
            return FetchResult(final_url, resp.status_code, "", content_type, True, "body_too_large")

        if not is_html:
            return FetchResult(final_url, resp.status_code, "", content_type, True, "non_html_content")

        return FetchResult(final_url, resp.status_code, resp.text or "", content_type)


class RenderFetcher(BaseFetcher):
    """Fetch through a headless-browser rendering service (``/content`` API).

    Slower and billed per call, but sees links added by client-side scripts.
    """

    strategy = "render"

    def __init__(
        self,
        *,
        endpoint: str,
        token: str,
        navigation_timeout: float = 45.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        # the service needs the navigation budget plus its own overhead
        super().__init__(timeout=navigation_timeout + 15, client=client)
        self.endpoint = endpoint
        self.token = token
        self.navigation_timeout = navigation_timeout

    async def _request(self, url: str) -> FetchResult:
        payload = {
            "url": url,
            "gotoOptions": {
                "waitUntil": "networkidle2",
                "timeout": int(self.navigation_timeout * 1000),
            },
        }
        try:
            resp = await self.client.post(
                self.endpoint,
                params={"token": self.token},
                json=payload,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTransient(f"Rendering {url} timed out", url=url) from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransient(f"Rendering service error for {url}: {exc!r}", url=url) from exc

        if not resp.is_success:
            raise UpstreamTransient(
                f"Rendering service answered {resp.status_code}: {resp.text[:200]}",
                url=url,
                status_code=resp.status_code,
            )

        html = resp.text or ""
        if is_challenge_page(html):
            raise UpstreamBlocked(f"Blocked rendering {url}: challenge page", url=url)

        return FetchResult(url, resp.status_code, html, "text/html")
