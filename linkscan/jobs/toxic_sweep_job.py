from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from loguru import logger

from linkscan.errors import InvalidInput, LinkscanError, best_effort
from linkscan.metrics import toxicity
from linkscan.monitoring.metrics_server import TOXIC_SWEEPS
from linkscan.scan_service import ScanService
from linkscan.storage.backlink_repository import storage_errors
from linkscan.storage.models import ToxicSweep, ToxicSweepSetting
from linkscan.storage.models.scan_model import SCAN_MODE_PRO, SCAN_SOURCE_SWEEP
from linkscan.utils.clock import as_utc, utcnow
from linkscan.utils.url_utils import normalize_domain


DEFAULT_CADENCE_DAYS = 30
MAX_CADENCE_DAYS = 365
# a sweep is due half a day before its cadence elapses
CADENCE_SLACK = timedelta(hours=12)


def is_due(setting: ToxicSweepSetting, now: datetime) -> bool:
    if setting.last_run_at is None:
        return True
    return now - as_utc(setting.last_run_at) >= timedelta(days=setting.cadence_days) - CADENCE_SLACK


class ToxicSweepJob:
    """Periodic pro scans that track the share of toxic links of a user's domain."""

    def __init__(self, scans: ScanService, clock: Callable[[], datetime] = utcnow):
        self.scans = scans
        self.clock = clock

    async def save_settings(
        self,
        user_id: str,
        domain: str,
        enabled: bool = True,
        cadence_days: Optional[int] = None,
    ) -> ToxicSweepSetting:
        normalized = normalize_domain(domain or "")
        if normalized is None:
            raise InvalidInput("Please enter a valid domain or URL")

        cadence = DEFAULT_CADENCE_DAYS if cadence_days is None else cadence_days
        if not 1 <= cadence <= MAX_CADENCE_DAYS:
            raise InvalidInput(f"cadenceDays must be between 1 and {MAX_CADENCE_DAYS}")

        with storage_errors(f"save toxic sweep settings of {user_id}"):
            setting, _ = await ToxicSweepSetting.update_or_create(
                defaults={"domain": normalized, "enabled": enabled, "cadence_days": cadence},
                user_id=user_id,
            )
        return setting

    async def due_settings(self, now: datetime) -> List[ToxicSweepSetting]:
        with storage_errors("load toxic sweep settings"):
            settings = await ToxicSweepSetting.filter(enabled=True).order_by("id")
        return [setting for setting in settings if is_due(setting, now)]

    async def sweep(self, setting: ToxicSweepSetting, now: datetime) -> dict:
        crawl = await self.scans.crawl(setting.domain, SCAN_MODE_PRO)
        scan = await self.scans.record(
            crawl, user_id=setting.user_id, mode=SCAN_MODE_PRO, source=SCAN_SOURCE_SWEEP
        )
        toxic = toxicity(crawl.links)

        with storage_errors(f"record toxic sweep of {setting.domain}"):
            await ToxicSweep.create(
                user_id=setting.user_id,
                domain=setting.domain,
                mode=SCAN_MODE_PRO,
                scan_id=scan.id,
                total_backlinks=crawl.total_backlinks,
                ref_domains=crawl.referring_domains,
                toxic_links=toxic["toxic"],
                toxic_percent=toxic["percent"],
                created_at=now,
            )

        return {
            "userId": setting.user_id,
            "domain": setting.domain,
            "ok": True,
            "scanId": scan.id,
            "totalBacklinks": crawl.total_backlinks,
            "toxicLinks": toxic["toxic"],
            "toxicPercent": toxic["percent"],
        }

    async def run(self) -> dict:
        now = self.clock()
        settings = await self.due_settings(now)
        if not settings:
            logger.info("[toxic-sweep] No sweeps due.")
            return {"ok": True, "message": "No enabled sweeps due.", "results": []}

        results: List[dict] = []
        for setting in settings:
            try:
                results.append(await self.sweep(setting, now))
                TOXIC_SWEEPS.labels(outcome="ok").inc()
            except LinkscanError as exc:
                logger.error(f"[toxic-sweep] {setting.domain} for {setting.user_id} failed: {exc}")
                TOXIC_SWEEPS.labels(outcome="failed").inc()
                results.append(
                    {"userId": setting.user_id, "domain": setting.domain, "ok": False, "error": str(exc)}
                )
                await best_effort(
                    ToxicSweep.create(
                        user_id=setting.user_id,
                        domain=setting.domain,
                        mode=SCAN_MODE_PRO,
                        error=str(exc),
                        created_at=now,
                    ),
                    f"failed sweep log of {setting.domain}",
                )

            # failed sweeps are stamped too
            try:
                with storage_errors(f"stamp toxic sweep of {setting.domain}"):
                    setting.last_run_at = now
                    await setting.save(update_fields=["last_run_at"])
            except LinkscanError as exc:
                logger.error(f"[toxic-sweep] Could not stamp {setting.domain}: {exc}")

        ok = sum(1 for result in results if result["ok"])
        logger.info(f"[toxic-sweep] {len(settings)} due, {ok} ok, {len(settings) - ok} failed")
        return {"ok": True, "results": results}
