from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set
from urllib.parse import urljoin

from loguru import logger

from linkscan.classifier import classify_link, parse_rel
from linkscan.errors import UpstreamError, categorize_error
from linkscan.fetcher import BaseFetcher
from linkscan.monitoring.metrics_server import (
    CRAWLS_IN_PROGRESS,
    LINKS_COLLECTED,
    PAGES_CRAWLED,
    SKIPPED_LINKS,
)
from linkscan.parsing.html_extractor import (
    Anchor,
    extract_anchors,
    extract_base_href,
    parse_html,
)
from linkscan.utils.filters import is_crawlable_link
from linkscan.utils.url_utils import (
    absolutize,
    build_start_url,
    get_domain,
    is_internal,
    normalize_url,
)


MAX_PARSE_CHARS = 2_000_000

# URL columns are CharField(2048)
MAX_URL_CHARS = 2048


@dataclass
class CrawlLimits:
    max_pages: int = 10
    max_depth: int = 2
    max_links: int = 1000


@dataclass
class FrontierItem:
    url: str
    depth: int


@dataclass
class LinkObservation:
    source_page: str
    target_url: str
    target_domain: str
    anchor: Optional[str]
    rel: Optional[str]
    nofollow: bool
    sponsored: bool
    ugc: bool
    link_type: str


@dataclass
class PageError:
    url: str
    kind: str
    message: str
    status_code: Optional[int] = None


@dataclass
class CrawlResult:
    target_domain: str
    seed_url: str
    links: List[LinkObservation] = field(default_factory=list)
    raw_link_count: int = 0
    pages_crawled: int = 0
    pages_fetched: int = 0
    errors: List[PageError] = field(default_factory=list)
    seed_error: Optional[UpstreamError] = None

    @property
    def total_backlinks(self) -> int:
        return len(self.links)

    @property
    def referring_domains(self) -> int:
        return len({link.target_domain for link in self.links})


class CrawlEngine:
    """Bounded breadth-first walk of one site collecting its off-domain links.

    The frontier is FIFO so shallow pages go first. Page, depth and link caps
    are checked on every iteration, which keeps the walk finite whatever the
    link density of the site.
    """

    def __init__(self, fetcher: BaseFetcher, limits: Optional[CrawlLimits] = None):
        self.fetcher = fetcher
        self.limits = limits or CrawlLimits()

    async def crawl(self, target_domain: str, seed_url: Optional[str] = None) -> CrawlResult:
        seed = seed_url or build_start_url(target_domain)
        result = CrawlResult(target_domain=target_domain, seed_url=seed)

        frontier: Deque[FrontierItem] = deque([FrontierItem(seed, 0)])
        queued: Set[str] = {normalize_url(seed, seed) or seed}
        visited: Set[str] = set()
        collected: List[LinkObservation] = []

        CRAWLS_IN_PROGRESS.inc()
        try:
            while frontier and len(visited) < self.limits.max_pages:
                item = frontier.popleft()
                key = normalize_url(item.url, item.url) or item.url
                if key in visited:
                    continue
                visited.add(key)

                html = await self._fetch_page(item, result)
                if html is None:
                    continue

                try:
                    self._process_page(item, html, target_domain, frontier, queued, visited, collected)
                except Exception as exc:
                    logger.error(f"[crawl] Failed to parse {item.url}: {exc}")
                    result.errors.append(PageError(item.url, categorize_error(exc), str(exc)[:500]))
                    continue

                result.pages_fetched += 1
                PAGES_CRAWLED.inc()
        finally:
            CRAWLS_IN_PROGRESS.dec()

        result.pages_crawled = len(visited)
        result.raw_link_count = len(collected)
        result.links = self._dedupe(collected)
        LINKS_COLLECTED.inc(len(collected))

        logger.info(
            f"[crawl] {target_domain}: {result.pages_crawled} pages, "
            f"{result.total_backlinks} links ({result.raw_link_count} raw), "
            f"{len(result.errors)} errors"
        )
        return result

    async def _fetch_page(self, item: FrontierItem, result: CrawlResult) -> Optional[str]:
        try:
            fetched = await self.fetcher.fetch(item.url)
        except UpstreamError as exc:
            logger.warning(f"[crawl] Fetch failed for {item.url}: {exc}")
            result.errors.append(PageError(item.url, exc.kind, str(exc)[:500], exc.status_code))
            if item.depth == 0 and result.seed_error is None:
                result.seed_error = exc
            return None

        if fetched.skipped:
            logger.info(f"[crawl] Skipped {item.url} ({fetched.skip_reason})")
            result.errors.append(
                PageError(item.url, "skipped", fetched.skip_reason or "skipped", fetched.status_code)
            )
            return None

        item.url = fetched.url or item.url
        return fetched.content[:MAX_PARSE_CHARS]

    def _process_page(
        self,
        item: FrontierItem,
        html: str,
        target_domain: str,
        frontier: Deque[FrontierItem],
        queued: Set[str],
        visited: Set[str],
        collected: List[LinkObservation],
    ) -> None:
        soup = parse_html(html)
        base_href = extract_base_href(soup)
        base_url = urljoin(item.url, base_href) if base_href else item.url
        can_descend = item.depth < self.limits.max_depth

        for anchor in extract_anchors(soup):
            absolute = absolutize(base_url, anchor.href)
            if absolute is None:
                continue

            if is_internal(absolute, target_domain):
                if can_descend:
                    self._enqueue(absolute, item.depth + 1, target_domain, frontier, queued, visited)
                continue

            if len(collected) >= self.limits.max_links:
                continue
            if len(absolute) > MAX_URL_CHARS:
                SKIPPED_LINKS.labels(reason="url_too_long").inc()
                continue
            collected.append(self._observe(item.url, absolute, anchor))

    def _enqueue(
        self,
        url: str,
        depth: int,
        target_domain: str,
        frontier: Deque[FrontierItem],
        queued: Set[str],
        visited: Set[str],
    ) -> None:
        key = normalize_url(url, url)
        if key is None or key in visited or key in queued:
            return
        if len(key) > MAX_URL_CHARS:
            SKIPPED_LINKS.labels(reason="url_too_long").inc()
            return
        if not is_crawlable_link(target_domain, key):
            SKIPPED_LINKS.labels(reason="not_html").inc()
            return
        queued.add(key)
        frontier.append(FrontierItem(key, depth))

    @staticmethod
    def _observe(source_page: str, target_url: str, anchor: Anchor) -> LinkObservation:
        flags = parse_rel(anchor.rel)
        return LinkObservation(
            source_page=source_page[:MAX_URL_CHARS],
            target_url=target_url,
            target_domain=get_domain(target_url),
            anchor=anchor.text,
            rel=anchor.rel,
            nofollow=flags.nofollow,
            sponsored=flags.sponsored,
            ugc=flags.ugc,
            link_type=classify_link(target_url),
        )

    @staticmethod
    def _dedupe(collected: List[LinkObservation]) -> List[LinkObservation]:
        # last observation of a URL wins, first-seen order is kept
        unique: Dict[str, LinkObservation] = {}
        for observation in collected:
            unique[observation.target_url] = observation
        return list(unique.values())
