"""Dashboard metrics derived from stored scans and the backlink index."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models import BacklinkScan, IndexedLink, ScanLink
from linkscan.utils.clock import as_utc, utcnow


SPAM_WORDS = ("casino", "poker", "betting", "loan", "payday", "viagra", "porn", "xxx", "escort", "pills")
LINK_FARM_WORDS = ("seo", "backlink", "linkbuild", "rankboost", "directory-submit", "freelinks")
CHEAP_TLDS = ("xyz", "top", "click", "loan", "work", "gq", "tk", "ml", "cf", "ga", "buzz", "icu")

NEGATIVE_IMPACT_RATIO = 0.04
MAX_TREND_DAYS = 30


def is_toxic(domain: str, *, sponsored: bool = False) -> bool:
    """Heuristic spam flag for a linking host."""
    domain = (domain or "").lower()
    if not domain:
        return False
    if sponsored:
        return True
    if domain.rsplit(".", 1)[-1] in CHEAP_TLDS:
        return True
    return any(word in domain for word in SPAM_WORDS + LINK_FARM_WORDS)


def toxicity(links: Iterable[ScanLink]) -> Dict[str, int]:
    total = 0
    toxic = 0
    for link in links:
        total += 1
        if is_toxic(link.target_domain, sponsored=link.sponsored):
            toxic += 1
    percent = round(toxic / total * 100) if total else 0
    return {"total": total, "toxic": toxic, "percent": percent}


def growth_score(total_backlinks: int, ref_domains: int) -> int:
    if total_backlinks == 0:
        return 0
    return min(100, round(total_backlinks / max(1, ref_domains) * 8))


def impact_series(scans: Sequence[BacklinkScan], days: int, today: date, baseline: int = 0) -> List[dict]:
    """Per-day change of total backlinks between consecutive scans, zero-filled.

    ``baseline`` is the total of the last scan before the window; the first
    scan in the window is measured against it.
    """
    daily: Dict[str, int] = {}
    previous = baseline
    for scan in scans:
        key = as_utc(scan.created_at).date().isoformat()
        total = scan.total_backlinks or 0
        daily[key] = daily.get(key, 0) + (total - previous)
        previous = total

    series = []
    for offset in range(days - 1, -1, -1):
        key = (today - timedelta(days=offset)).isoformat()
        series.append({"date": key, "net_impact": daily.get(key, 0)})
    return series


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


class MetricsService:
    def __init__(self, repository: BacklinkRepository):
        self.repository = repository

    async def summary(self, domain: str) -> dict:
        scan = await self.repository.latest_scan(domain)
        if scan is None:
            return {
                "target": domain,
                "scan_id": None,
                "kpis": {
                    "total_backlinks": 0,
                    "ref_domains": 0,
                    "negative_impact_links": 0,
                    "growth_score": 0,
                    "toxic_links": 0,
                    "toxic_percent": 0,
                    "net_impact_change_7d": 0,
                },
            }

        links = await self.repository.scan_links(scan.id)
        toxic = toxicity(links)
        week = await self.trend(domain, 7)

        return {
            "target": domain,
            "scan_id": scan.id,
            "kpis": {
                "total_backlinks": scan.total_backlinks,
                "ref_domains": scan.ref_domains,
                "negative_impact_links": round(scan.total_backlinks * NEGATIVE_IMPACT_RATIO),
                "growth_score": growth_score(scan.total_backlinks, scan.ref_domains),
                "toxic_links": toxic["toxic"],
                "toxic_percent": toxic["percent"],
                "net_impact_change_7d": sum(point["net_impact"] for point in week),
            },
        }

    async def trend(self, domain: str, days: int = 7, now: Optional[datetime] = None) -> List[dict]:
        days = min(MAX_TREND_DAYS, max(1, days))
        now = as_utc(now) if now else utcnow()
        start = datetime.combine(now.date() - timedelta(days=days - 1), time.min, tzinfo=timezone.utc)
        before = await self.repository.latest_scan(domain, before=start)
        scans = await self.repository.scans_for_domain(domain, since=start)
        baseline = before.total_backlinks if before is not None else 0
        return impact_series(scans, days, now.date(), baseline=baseline)

    async def index_summary(self, domain: str) -> dict:
        links: List[IndexedLink] = await self.repository.index_links(domain)
        buckets = await self.repository.index_by_domain(domain)

        dates = [as_utc(value) for link in links for value in (link.first_seen_at, link.last_seen_at) if value]

        return {
            "ok": True,
            "targetDomain": domain,
            "totals": {
                "totalLinks": sum(bucket.links_count for bucket in buckets),
                "refDomains": len(buckets),
                "oldest": _iso(min(dates)) if dates else None,
                "newest": _iso(max(dates)) if dates else None,
            },
            "byDomain": [
                {
                    "linking_domain": bucket.linking_domain,
                    "links_count": bucket.links_count,
                    "first_seen_at": _iso(bucket.first_seen_at),
                    "last_seen_at": _iso(bucket.last_seen_at),
                }
                for bucket in buckets
            ],
            "latestLinks": [
                {
                    "linking_domain": link.linking_domain,
                    "linking_url": link.linking_url,
                    "first_seen_at": _iso(link.first_seen_at),
                    "last_seen_at": _iso(link.last_seen_at),
                    "total_scans_seen": link.total_scans_seen,
                    "link_type": link.link_type,
                    "toxic": is_toxic(link.linking_domain, sponsored=link.sponsored),
                }
                for link in links
            ],
        }
