from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from linkscan.errors import LinkscanError
from linkscan.indexer import reduce_observations
from linkscan.monitoring.metrics_server import REINDEXED_TARGETS
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models import BacklinkTarget
from linkscan.utils.clock import utcnow


@dataclass
class ReindexOutcome:
    target_id: int
    domain: str
    ok: bool = True
    index_rows: int = 0
    scans_used: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict:
        data = {
            "target_id": self.target_id,
            "domain": self.domain,
            "ok": self.ok,
            "index_rows": self.index_rows,
            "scans_used": self.scans_used,
        }
        if self.error:
            data["error"] = self.error
        return data


class ReindexJob:
    """Rebuild the backlink index of the stalest targets.

    Each target's index is replaced wholesale from its full observation
    history. A failing target is reported and skipped; the rest of the batch
    still runs.
    """

    def __init__(
        self,
        repository: BacklinkRepository,
        batch_size: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.batch_size = batch_size
        self.clock = clock

    async def reindex_target(self, target: BacklinkTarget, now: datetime) -> ReindexOutcome:
        domain = target.domain
        scans = await self.repository.scans_for_domain(domain)

        if not scans:
            # nothing scanned yet; mark it so the batch moves on to other targets
            await self.repository.mark_indexed(target.id, now)
            return ReindexOutcome(target.id, domain)

        observations = await self.repository.load_observations(scans)
        rows = reduce_observations(domain, observations)
        written = await self.repository.replace_index(domain, rows)
        await self.repository.mark_indexed(target.id, now)

        return ReindexOutcome(target.id, domain, index_rows=written, scans_used=len(scans))

    async def run(self) -> List[ReindexOutcome]:
        now = self.clock()
        targets = await self.repository.targets_for_reindex(self.batch_size)
        if not targets:
            logger.info("[reindex] No backlink targets to index.")
            return []

        outcomes: List[ReindexOutcome] = []
        for target in targets:
            if not target.domain:
                continue
            try:
                outcome = await self.reindex_target(target, now)
            except LinkscanError as exc:
                logger.error(f"[reindex] {target.domain} failed: {exc}")
                REINDEXED_TARGETS.labels(outcome="failed").inc()
                outcomes.append(ReindexOutcome(target.id, target.domain, ok=False, error=str(exc)))
                continue

            REINDEXED_TARGETS.labels(outcome="ok").inc()
            logger.info(
                f"[reindex] {outcome.domain}: {outcome.index_rows} rows from {outcome.scans_used} scans"
            )
            outcomes.append(outcome)

        return outcomes
