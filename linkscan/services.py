from __future__ import annotations

from dataclasses import dataclass

from linkscan.crawl_engine import CrawlLimits
from linkscan.email_client import EmailClient
from linkscan.fetcher import DirectFetcher, RenderFetcher
from linkscan.jobs.indexer_job import IndexerJob
from linkscan.jobs.reindex_job import ReindexJob
from linkscan.jobs.toxic_sweep_job import ToxicSweepJob
from linkscan.jobs.weekly_report_job import WeeklyReportJob
from linkscan.metrics import MetricsService
from linkscan.quota import QuotaLedger
from linkscan.scan_service import ScanService
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models.scan_model import SCAN_MODE_BASIC, SCAN_MODE_PRO
from linkscan.utils.config_loader import Config


@dataclass
class Services:
    config: Config
    repository: BacklinkRepository
    ledger: QuotaLedger
    scans: ScanService
    metrics: MetricsService
    reindex: ReindexJob
    indexer: IndexerJob
    reports: WeeklyReportJob
    sweeps: ToxicSweepJob


def build_services(config: Config) -> Services:
    """Wire every component from the configuration. Called once at startup."""
    repository = BacklinkRepository()
    ledger = QuotaLedger(config.plan_limits())

    def direct() -> DirectFetcher:
        return DirectFetcher(
            user_agent=config.user_agent,
            timeout=config.request_timeout,
            max_download_bytes=config.max_download_bytes,
        )

    fetchers = {SCAN_MODE_BASIC: direct}
    if config.render_token:

        def render() -> RenderFetcher:
            return RenderFetcher(
                endpoint=config.render_url,
                token=config.render_token,
                navigation_timeout=config.render_timeout,
            )

        fetchers[SCAN_MODE_PRO] = render

    limits = CrawlLimits(
        max_pages=config.max_pages,
        max_depth=config.max_depth,
        max_links=config.max_links,
    )
    scans = ScanService(repository, ledger, fetchers, limits)

    email = EmailClient(config.email_api_url, config.email_api_key, config.email_from)

    return Services(
        config=config,
        repository=repository,
        ledger=ledger,
        scans=scans,
        metrics=MetricsService(repository),
        reindex=ReindexJob(repository, batch_size=config.reindex_batch_size),
        indexer=IndexerJob(
            repository,
            scans,
            batch_size=config.indexer_batch_size,
            stale_hours=config.indexer_stale_hours,
        ),
        reports=WeeklyReportJob(
            repository,
            email,
            site_url=config.site_url,
            batch_size=config.report_batch_size,
        ),
        sweeps=ToxicSweepJob(scans),
    )
