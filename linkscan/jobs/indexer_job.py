from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List

from loguru import logger

from linkscan.errors import LinkscanError
from linkscan.scan_service import ScanService
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models.scan_model import SCAN_MODE_BASIC, SCAN_SOURCE_INDEXER
from linkscan.utils.clock import utcnow


class IndexerJob:
    """Crawl a few targets that were never crawled or not in the last ``stale_hours``."""

    def __init__(
        self,
        repository: BacklinkRepository,
        scans: ScanService,
        batch_size: int = 3,
        stale_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.scans = scans
        self.batch_size = batch_size
        self.stale_hours = stale_hours
        self.clock = clock

    async def run(self) -> List[dict]:
        now = self.clock()
        cutoff = now - timedelta(hours=self.stale_hours)
        targets = await self.repository.targets_for_crawl(self.batch_size, cutoff)
        if not targets:
            logger.info("[indexer] No targets to crawl right now.")
            return []

        results: List[dict] = []
        for target in targets:
            try:
                crawl = await self.scans.crawl(target.domain, SCAN_MODE_BASIC)
                scan = await self.scans.record(
                    crawl,
                    user_id=target.user_id,
                    mode=SCAN_MODE_BASIC,
                    source=SCAN_SOURCE_INDEXER,
                )
            except LinkscanError as exc:
                logger.error(f"[indexer] {target.domain} failed: {exc}")
                results.append({"domain": target.domain, "ok": False, "error": str(exc)})
            else:
                results.append(
                    {
                        "domain": target.domain,
                        "ok": True,
                        "scanId": scan.id,
                        "pagesCrawled": crawl.pages_crawled,
                        "linksIndexed": crawl.total_backlinks,
                    }
                )

            # failed targets are stamped too so one broken site does not hog every run
            try:
                await self.repository.mark_crawled(target.id, now)
            except LinkscanError as exc:
                logger.error(f"[indexer] Could not stamp {target.domain}: {exc}")

        return results
