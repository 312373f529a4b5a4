from datetime import datetime, timedelta, timezone

import pytest

from linkscan.crawl_engine import CrawlResult, LinkObservation, PageError
from linkscan.errors import StorageFailure
from linkscan.jobs.reindex_job import ReindexJob
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models import BacklinkTarget, CrawlErrorLog, IndexedLink, ScanLink
from linkscan.utils.clock import as_utc


DAY1 = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
DAY5 = datetime(2024, 3, 5, 12, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 6, tzinfo=timezone.utc)


def link(url: str, anchor: str = "anchor", rel: str = None) -> LinkObservation:
    domain = url.split("/")[2]
    return LinkObservation(
        source_page="https://example.com/",
        target_url=url,
        target_domain=domain,
        anchor=anchor,
        rel=rel,
        nofollow=bool(rel and "nofollow" in rel),
        sponsored=bool(rel and "sponsored" in rel),
        ugc=False,
        link_type="editorial",
    )


def crawl_result(domain: str, *links: LinkObservation, errors=()) -> CrawlResult:
    return CrawlResult(
        target_domain=domain,
        seed_url=f"https://{domain}",
        links=list(links),
        raw_link_count=len(links),
        pages_crawled=3,
        pages_fetched=3,
        errors=list(errors),
    )


async def record(repo: BacklinkRepository, result: CrawlResult, when: datetime):
    await repo.ensure_target(result.target_domain)
    return await repo.record_scan(result, created_at=when)


@pytest.mark.asyncio
async def test_record_scan_writes_scan_and_links(db):
    repo = BacklinkRepository()

    scan = await record(repo, crawl_result("example.com", link("https://a.org/x"), link("https://b.org/")), DAY1)

    assert scan.total_backlinks == 2
    assert scan.ref_domains == 2
    assert scan.pages_crawled == 3
    assert await ScanLink.filter(scan_id=scan.id).count() == 2
    assert (await repo.latest_scan("example.com")).id == scan.id


@pytest.mark.asyncio
async def test_log_page_errors_writes_rows(db):
    repo = BacklinkRepository()
    errors = [PageError("https://example.com/x", "transient", "timeout"), PageError("https://example.com/y", "blocked", "403", 403)]

    written = await repo.log_page_errors("example.com", 1, errors)

    assert written == 2
    assert await CrawlErrorLog.filter(domain="example.com", kind="blocked", status_code=403).count() == 1


@pytest.mark.asyncio
async def test_reindex_builds_index_across_scans(db):
    repo = BacklinkRepository()
    await record(repo, crawl_result("example.com", link("https://a.org/post", "old")), DAY1)
    second = await record(
        repo,
        crawl_result("example.com", link("https://a.org/post", "new"), link("https://b.org/", rel="nofollow")),
        DAY5,
    )

    outcomes = await ReindexJob(repo, clock=lambda: NOW).run()

    assert [outcome.as_dict() for outcome in outcomes] == [
        {"target_id": outcomes[0].target_id, "domain": "example.com", "ok": True, "index_rows": 2, "scans_used": 2}
    ]

    rows = {row.linking_url: row for row in await repo.index_links("example.com")}
    assert set(rows) == {"https://a.org/post", "https://b.org/"}

    post = rows["https://a.org/post"]
    assert as_utc(post.first_seen_at) == DAY1
    assert as_utc(post.last_seen_at) == DAY5
    assert post.total_scans_seen == 2
    assert post.last_scan_id == second.id
    assert post.anchor == "new"
    assert rows["https://b.org/"].nofollow is True

    target = await BacklinkTarget.get(domain="example.com")
    assert as_utc(target.last_indexed) == NOW


@pytest.mark.asyncio
async def test_reindex_twice_gives_same_rows(db):
    repo = BacklinkRepository()
    await record(repo, crawl_result("example.com", link("https://a.org/x"), link("https://c.org/y")), DAY1)
    job = ReindexJob(repo, clock=lambda: NOW)

    await job.run()
    first = await IndexedLink.filter(target_domain="example.com").order_by("linking_url").values(
        "linking_domain", "linking_url", "first_seen_at", "last_seen_at", "total_scans_seen", "last_scan_id"
    )
    await job.run()
    second = await IndexedLink.filter(target_domain="example.com").order_by("linking_url").values(
        "linking_domain", "linking_url", "first_seen_at", "last_seen_at", "total_scans_seen", "last_scan_id"
    )

    assert first == second
    assert len(first) == 2


@pytest.mark.asyncio
async def test_target_without_scans_is_marked_with_empty_index(db):
    repo = BacklinkRepository()
    await repo.ensure_target("empty.com")

    outcomes = await ReindexJob(repo, clock=lambda: NOW).run()

    assert len(outcomes) == 1
    assert outcomes[0].ok is True
    assert outcomes[0].index_rows == 0
    assert await IndexedLink.filter(target_domain="empty.com").count() == 0
    target = await BacklinkTarget.get(domain="empty.com")
    assert target.last_indexed is not None


@pytest.mark.asyncio
async def test_batch_prefers_never_indexed_then_oldest(db):
    repo = BacklinkRepository()
    for name in ("old.com", "new.com", "never.com"):
        await repo.ensure_target(name)
    old = await BacklinkTarget.get(domain="old.com")
    new = await BacklinkTarget.get(domain="new.com")
    await repo.mark_indexed(old.id, NOW - timedelta(days=3))
    await repo.mark_indexed(new.id, NOW - timedelta(days=1))

    targets = await repo.targets_for_reindex(2)

    assert [target.domain for target in targets] == ["never.com", "old.com"]


@pytest.mark.asyncio
async def test_failing_target_does_not_abort_batch(db, monkeypatch):
    repo = BacklinkRepository()
    await record(repo, crawl_result("broken.com", link("https://a.org/x")), DAY1)
    await record(repo, crawl_result("fine.com", link("https://b.org/y")), DAY1)

    real_replace = repo.replace_index

    async def flaky_replace(domain, rows):
        if domain == "broken.com":
            raise StorageFailure("replace index of broken.com failed: disk full")
        return await real_replace(domain, rows)

    monkeypatch.setattr(repo, "replace_index", flaky_replace)

    outcomes = await ReindexJob(repo, clock=lambda: NOW).run()
    by_domain = {outcome.domain: outcome for outcome in outcomes}

    assert by_domain["broken.com"].ok is False
    assert "disk full" in by_domain["broken.com"].error
    assert by_domain["fine.com"].ok is True
    assert await IndexedLink.filter(target_domain="fine.com").count() == 1

    broken = await BacklinkTarget.get(domain="broken.com")
    assert broken.last_indexed is None


@pytest.mark.asyncio
async def test_index_by_domain_groups_rows(db):
    repo = BacklinkRepository()
    await record(
        repo,
        crawl_result(
            "example.com",
            link("https://a.org/1"),
            link("https://a.org/2"),
            link("https://b.org/"),
        ),
        DAY1,
    )
    await record(repo, crawl_result("example.com", link("https://a.org/1")), DAY5)
    await ReindexJob(repo, clock=lambda: NOW).run()

    buckets = await repo.index_by_domain("example.com")

    assert [(bucket.linking_domain, bucket.links_count) for bucket in buckets] == [("a.org", 2), ("b.org", 1)]
    assert buckets[0].first_seen_at == DAY1
    assert buckets[0].last_seen_at == DAY5
    assert await repo.count_index_links(["example.com", "other.com"]) == 3


@pytest.mark.asyncio
async def test_bulk_writes_truncate_long_text(db):
    repo = BacklinkRepository()
    scan = await record(repo, crawl_result("example.com", link("https://a.org/x", anchor="w" * 1500)), DAY1)
    await repo.log_page_errors("example.com", scan.id, [PageError("https://example.com/x", "transient", "e" * 900)])

    stored = await ScanLink.get(scan_id=scan.id)
    logged = await CrawlErrorLog.get(domain="example.com")

    assert len(stored.anchor) == 1000
    assert len(logged.error_message) == 512
