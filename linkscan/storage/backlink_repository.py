from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from loguru import logger
from tortoise.exceptions import BaseORMException
from tortoise.functions import Count, Max, Min
from tortoise.transactions import in_transaction

from linkscan.crawl_engine import CrawlResult, PageError
from linkscan.errors import StorageFailure
from linkscan.indexer import IndexedLinkRow, Observation
from linkscan.storage.models import (
    BacklinkScan,
    BacklinkTarget,
    CrawlErrorLog,
    IndexedLink,
    ScanLink,
)
from linkscan.utils.clock import as_utc


BULK_BATCH_SIZE = 500
MAX_ANCHOR_CHARS = 1000


@dataclass
class DomainBucket:
    linking_domain: str
    links_count: int
    first_seen_at: Optional[datetime]
    last_seen_at: Optional[datetime]


def _to_datetime(value) -> Optional[datetime]:
    # SQLite hands aggregates back as text
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)


@contextmanager
def storage_errors(what: str) -> Iterator[None]:
    """Re-raise driver and ORM errors as StorageFailure."""
    try:
        yield
    except (BaseORMException, OSError) as exc:
        logger.error(f"[storage] {what} failed: {exc}")
        raise StorageFailure(f"{what} failed: {exc}") from exc


class BacklinkRepository:
    """Reads and writes of targets, scans, observations and the backlink index."""

    # -------------------------------------------------------
    # Targets
    # -------------------------------------------------------

    async def ensure_target(self, domain: str, user_id: Optional[str] = None) -> BacklinkTarget:
        with storage_errors(f"ensure target {domain}"):
            target, _ = await BacklinkTarget.get_or_create(
                domain=domain, defaults={"user_id": user_id}
            )
            if user_id and not target.user_id:
                target.user_id = user_id
                await target.save(update_fields=["user_id"])
            return target

    async def _nulls_first(self, null_field: str, limit: int, **older_than) -> List[BacklinkTarget]:
        # NULL ordering differs between Postgres and SQLite, so split the query
        never = await BacklinkTarget.filter(**{f"{null_field}__isnull": True}).order_by("id").limit(limit)
        remaining = limit - len(never)
        if remaining <= 0:
            return list(never)

        query = BacklinkTarget.filter(**{f"{null_field}__isnull": False})
        if older_than:
            query = query.filter(**older_than)
        rest = await query.order_by(null_field, "id").limit(remaining)
        return list(never) + list(rest)

    async def targets_for_reindex(self, limit: int) -> List[BacklinkTarget]:
        with storage_errors("select reindex targets"):
            return await self._nulls_first("last_indexed", limit)

    async def targets_for_crawl(self, limit: int, cutoff: datetime) -> List[BacklinkTarget]:
        with storage_errors("select crawl targets"):
            return await self._nulls_first("last_crawled", limit, last_crawled__lte=cutoff)

    async def mark_indexed(self, target_id: int, when: datetime) -> None:
        with storage_errors("mark target indexed"):
            await BacklinkTarget.filter(id=target_id).update(last_indexed=when)

    async def mark_crawled(self, target_id: int, when: datetime) -> None:
        with storage_errors("mark target crawled"):
            await BacklinkTarget.filter(id=target_id).update(last_crawled=when)

    async def domains_for_user(self, user_id: str) -> List[str]:
        with storage_errors("load user targets"):
            return await BacklinkTarget.filter(user_id=user_id).values_list("domain", flat=True)

    # -------------------------------------------------------
    # Scans
    # -------------------------------------------------------

    async def record_scan(
        self,
        result: CrawlResult,
        *,
        created_at: datetime,
        user_id: Optional[str] = None,
        mode: str = "basic",
        source: str = "user",
    ) -> BacklinkScan:
        with storage_errors(f"record scan of {result.target_domain}"):
            async with in_transaction() as conn:
                scan = await BacklinkScan.create(
                    domain=result.target_domain,
                    user_id=user_id,
                    mode=mode,
                    source=source,
                    total_backlinks=result.total_backlinks,
                    ref_domains=result.referring_domains,
                    pages_crawled=result.pages_crawled,
                    created_at=created_at,
                    using_db=conn,
                )

                rows = [
                    ScanLink(
                        scan_id=scan.id,
                        source_page=link.source_page,
                        target_url=link.target_url,
                        target_domain=link.target_domain,
                        anchor=link.anchor[:MAX_ANCHOR_CHARS] if link.anchor else None,
                        rel=link.rel[:255] if link.rel else None,
                        nofollow=link.nofollow,
                        sponsored=link.sponsored,
                        ugc=link.ugc,
                        link_type=link.link_type,
                    )
                    for link in result.links
                ]
                if rows:
                    await ScanLink.bulk_create(rows, batch_size=BULK_BATCH_SIZE, using_db=conn)

        logger.debug(f"[storage] Scan {scan.id} of {result.target_domain}: {len(result.links)} links")
        return scan

    async def log_page_errors(self, domain: str, scan_id: Optional[int], errors: Sequence[PageError]) -> int:
        if not errors:
            return 0
        await CrawlErrorLog.bulk_create(
            [
                CrawlErrorLog(
                    domain=domain,
                    url=error.url[:2048],
                    kind=error.kind,
                    status_code=error.status_code,
                    error_message=error.message[:512],
                    scan_id=scan_id,
                )
                for error in errors
            ]
        )
        return len(errors)

    async def scans_for_domain(self, domain: str, since: Optional[datetime] = None) -> List[BacklinkScan]:
        with storage_errors(f"load scans of {domain}"):
            query = BacklinkScan.filter(domain=domain)
            if since is not None:
                query = query.filter(created_at__gte=since)
            return await query.order_by("created_at", "id")

    async def latest_scan(self, domain: str, before: Optional[datetime] = None) -> Optional[BacklinkScan]:
        with storage_errors(f"load latest scan of {domain}"):
            query = BacklinkScan.filter(domain=domain)
            if before is not None:
                query = query.filter(created_at__lt=before)
            return await query.order_by("-created_at", "-id").first()

    async def recent_scans(self, user_id: str, limit: int = 10) -> List[BacklinkScan]:
        with storage_errors("load recent scans"):
            return await BacklinkScan.filter(user_id=user_id).order_by("-created_at", "-id").limit(limit)

    async def scan_links(self, scan_id: int) -> List[ScanLink]:
        with storage_errors(f"load links of scan {scan_id}"):
            return await ScanLink.filter(scan_id=scan_id).order_by("id")

    async def load_observations(self, scans: Sequence[BacklinkScan]) -> List[Observation]:
        """All observations of the given scans, stamped with their scan time."""
        scanned_at: Dict[int, datetime] = {scan.id: as_utc(scan.created_at) for scan in scans}
        if not scanned_at:
            return []

        with storage_errors("load scan links"):
            rows = await ScanLink.filter(scan_id__in=list(scanned_at)).order_by("id").values(
                "scan_id",
                "target_url",
                "target_domain",
                "link_type",
                "anchor",
                "nofollow",
                "sponsored",
                "ugc",
            )

        return [
            Observation(
                scan_id=row["scan_id"],
                scanned_at=scanned_at[row["scan_id"]],
                linking_domain=row["target_domain"],
                linking_url=row["target_url"],
                link_type=row["link_type"],
                anchor=row["anchor"],
                nofollow=row["nofollow"],
                sponsored=row["sponsored"],
                ugc=row["ugc"],
            )
            for row in rows
        ]

    # -------------------------------------------------------
    # Index
    # -------------------------------------------------------

    async def replace_index(self, domain: str, rows: Sequence[IndexedLinkRow]) -> int:
        """Delete every index row of ``domain`` then insert ``rows``.

        Not transactional: a crash between the two steps leaves the domain
        without index rows until the next reindex.
        """
        with storage_errors(f"replace index of {domain}"):
            await IndexedLink.filter(target_domain=domain).delete()
            if rows:
                await IndexedLink.bulk_create(
                    [
                        IndexedLink(
                            target_domain=row.target_domain,
                            linking_domain=row.linking_domain,
                            linking_url=row.linking_url,
                            first_seen_at=row.first_seen_at,
                            last_seen_at=row.last_seen_at,
                            total_scans_seen=row.total_scans_seen,
                            last_scan_id=row.last_scan_id,
                            last_scan_at=row.last_scan_at,
                            link_type=row.link_type,
                            anchor=row.anchor,
                            nofollow=row.nofollow,
                            sponsored=row.sponsored,
                            ugc=row.ugc,
                        )
                        for row in rows
                    ],
                    batch_size=BULK_BATCH_SIZE,
                )
        return len(rows)

    async def index_links(self, domain: str) -> List[IndexedLink]:
        with storage_errors(f"load index of {domain}"):
            return await IndexedLink.filter(target_domain=domain).order_by("-last_seen_at", "linking_url")

    async def index_by_domain(self, domain: str) -> List[DomainBucket]:
        """Group/count/min/max of the index rows of ``domain`` per linking domain."""
        with storage_errors(f"aggregate index of {domain}"):
            rows = (
                await IndexedLink.filter(target_domain=domain)
                .annotate(
                    links_count=Count("id"),
                    first_seen=Min("first_seen_at"),
                    last_seen=Max("last_seen_at"),
                )
                .group_by("linking_domain")
                .values("linking_domain", "links_count", "first_seen", "last_seen")
            )

        buckets = [
            DomainBucket(
                linking_domain=row["linking_domain"],
                links_count=row["links_count"],
                first_seen_at=_to_datetime(row["first_seen"]),
                last_seen_at=_to_datetime(row["last_seen"]),
            )
            for row in rows
        ]
        buckets.sort(key=lambda bucket: (-bucket.links_count, bucket.linking_domain))
        return buckets

    async def count_index_links(self, domains: Sequence[str]) -> int:
        if not domains:
            return 0
        with storage_errors("count index links"):
            return await IndexedLink.filter(target_domain__in=list(domains)).count()
