from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from loguru import logger

from linkscan.classifier import RelFlags, display_category
from linkscan.crawl_engine import CrawlEngine, CrawlLimits, CrawlResult, LinkObservation
from linkscan.errors import (
    AuthRequired,
    FeatureUnavailable,
    InvalidInput,
    QuotaExceeded,
    UpstreamTransient,
    best_effort,
)
from linkscan.fetcher import BaseFetcher
from linkscan.monitoring.metrics_server import QUOTA_REJECTIONS, SCANS
from linkscan.quota import QuotaLedger, QuotaReservation
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models.scan_model import (
    SCAN_MODE_BASIC,
    SCAN_MODE_PRO,
    SCAN_SOURCE_USER,
)
from linkscan.utils.clock import utcnow
from linkscan.utils.url_utils import normalize_domain


SAMPLE_SIZES = {SCAN_MODE_BASIC: 10, SCAN_MODE_PRO: 50}

FetcherFactory = Callable[[], BaseFetcher]


@dataclass(frozen=True)
class Caller:
    """Identity resolved at the edge; anonymous callers have no user id."""

    user_id: Optional[str] = None
    is_admin: bool = False


@dataclass
class ScanRequest:
    target: str
    mode: str = SCAN_MODE_BASIC


@dataclass
class ScanResponse:
    target: str
    mode: str
    total_backlinks: int
    ref_domains: int
    pages_crawled: int
    sample: List[dict] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)
    scan_id: Optional[int] = None
    quota: Optional[dict] = None

    def as_dict(self) -> dict:
        return {
            "ok": True,
            "target": self.target,
            "mode": self.mode,
            "totalBacklinks": self.total_backlinks,
            "refDomains": self.ref_domains,
            "pagesCrawled": self.pages_crawled,
            "sample": self.sample,
            "errors": self.errors,
            "scanId": self.scan_id,
            "quota": self.quota,
        }


def link_to_dict(link: LinkObservation) -> dict:
    flags = RelFlags(link.nofollow, link.sponsored, link.ugc)
    return {
        "url": link.target_url,
        "domain": link.target_domain,
        "sourcePage": link.source_page,
        "anchor": link.anchor,
        "rel": link.rel,
        "nofollow": link.nofollow,
        "sponsored": link.sponsored,
        "ugc": link.ugc,
        "type": link.link_type,
        "category": display_category(link.target_url, flags),
    }


class ScanService:
    """On-demand scans: validation, quota, crawl, persistence."""

    def __init__(
        self,
        repository: BacklinkRepository,
        ledger: QuotaLedger,
        fetchers: Dict[str, FetcherFactory],
        limits: Optional[CrawlLimits] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if SCAN_MODE_BASIC not in fetchers:
            raise ValueError("a basic fetcher is required")
        self.repository = repository
        self.ledger = ledger
        self.fetchers = fetchers
        self.limits = limits or CrawlLimits()
        self.clock = clock

    async def crawl(self, domain: str, mode: str = SCAN_MODE_BASIC) -> CrawlResult:
        """Crawl ``domain``; raises the seed failure when no page could be fetched."""
        factory = self.fetchers.get(mode)
        if factory is None:
            logger.warning(f"[scan] No fetcher for mode '{mode}', falling back to direct fetch")
            factory = self.fetchers[SCAN_MODE_BASIC]

        async with factory() as fetcher:
            result = await CrawlEngine(fetcher, self.limits).crawl(domain)

        if result.pages_fetched == 0:
            if result.seed_error is not None:
                raise result.seed_error
            raise UpstreamTransient(f"No page of {domain} could be fetched", url=result.seed_url)
        return result

    async def record(
        self,
        result: CrawlResult,
        *,
        user_id: Optional[str],
        mode: str,
        source: str = SCAN_SOURCE_USER,
    ):
        await self.repository.ensure_target(result.target_domain, user_id)
        scan = await self.repository.record_scan(
            result,
            created_at=self.clock(),
            user_id=user_id,
            mode=mode,
            source=source,
        )
        await best_effort(
            self.repository.log_page_errors(result.target_domain, scan.id, result.errors),
            f"page error log of scan {scan.id}",
        )
        return scan

    async def _reserve(self, caller: Caller) -> Optional[QuotaReservation]:
        if caller.is_admin:
            return None
        if not caller.user_id:
            raise AuthRequired("pro scans need a signed-in user")

        limit = await self.ledger.limit_for(caller.user_id)
        reservation = await self.ledger.reserve(caller.user_id, limit, now=self.clock())
        if not reservation.ok:
            QUOTA_REJECTIONS.inc()
            raise QuotaExceeded(
                limit=reservation.limit,
                used=reservation.used_today,
                reset_at=reservation.reset_at,
            )
        return reservation

    async def scan(self, request: ScanRequest, caller: Caller) -> ScanResponse:
        mode = (request.mode or SCAN_MODE_BASIC).lower()
        if mode not in SAMPLE_SIZES:
            raise InvalidInput(f"Unknown scan mode '{request.mode}'")

        domain = normalize_domain(request.target)
        if domain is None:
            raise InvalidInput("Please enter a valid domain or URL")
        if mode not in self.fetchers:
            raise FeatureUnavailable(f"no fetcher registered for mode '{mode}'")

        reservation = await self._reserve(caller) if mode == SCAN_MODE_PRO else None

        try:
            result = await self.crawl(domain, mode)
        except Exception as exc:
            SCANS.labels(mode=mode, outcome=getattr(exc, "kind", "error")).inc()
            if reservation is not None:
                await best_effort(self.ledger.rollback(reservation), f"quota rollback for {caller.user_id}")
            raise

        scan = await self.record(result, user_id=caller.user_id, mode=mode)
        SCANS.labels(mode=mode, outcome="ok").inc()

        return ScanResponse(
            target=domain,
            mode=mode,
            total_backlinks=result.total_backlinks,
            ref_domains=result.referring_domains,
            pages_crawled=result.pages_crawled,
            sample=[link_to_dict(link) for link in result.links[: SAMPLE_SIZES[mode]]],
            errors=[
                {"url": error.url, "kind": error.kind, "status": error.status_code, "message": error.message}
                for error in result.errors
            ],
            scan_id=scan.id,
            quota=reservation.as_dict() if reservation is not None else None,
        )
