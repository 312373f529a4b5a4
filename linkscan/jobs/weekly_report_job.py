from __future__ import annotations

import html
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List

from loguru import logger

from linkscan.email_client import EmailClient
from linkscan.errors import LinkscanError, best_effort
from linkscan.monitoring.metrics_server import REPORTS_SENT
from linkscan.storage.backlink_repository import BacklinkRepository, storage_errors
from linkscan.storage.models import EmailSend, ReportSetting
from linkscan.utils.clock import utcnow


REPORT_INTERVAL = timedelta(days=7)


@dataclass
class ReportEmail:
    subject: str
    html: str
    text: str


def build_report_email(total_backlinks: int, report_url: str, settings_url: str, pixel_url: str) -> ReportEmail:
    subject = "Your weekly backlink report"
    total = f"{total_backlinks:,}"
    body = f"""
<div style="font-family: system-ui, sans-serif; color:#111827; padding:24px;">
  <h1 style="font-size:20px;">Weekly backlink report</h1>
  <p>Total backlinks tracked</p>
  <p style="font-size:24px;font-weight:700;">{total}</p>
  <p>Log in to see toxic links, new referring domains and anchor text.</p>
  <p><a href="{html.escape(report_url)}">View full report</a></p>
  <p style="font-size:12px;color:#6b7280;">
    <a href="{html.escape(settings_url)}">Manage notification settings</a>
  </p>
  <img src="{html.escape(pixel_url)}" alt="" width="1" height="1" />
</div>
""".strip()
    text = (
        f"Your weekly backlink report\n\nTotal backlinks: {total}\n\n"
        f"View full report: {report_url}\n\nManage notification settings: {settings_url}"
    )
    return ReportEmail(subject, body, text)


class WeeklyReportJob:
    """Email a backlink summary to a small batch of users whose report is due."""

    def __init__(
        self,
        repository: BacklinkRepository,
        email: EmailClient,
        site_url: str,
        batch_size: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.email = email
        self.site_url = site_url.rstrip("/")
        self.batch_size = batch_size
        self.clock = clock

    async def due_settings(self, now: datetime) -> List[ReportSetting]:
        with storage_errors("load report settings"):
            never = await ReportSetting.filter(
                weekly_reports_enabled=True, last_report_at__isnull=True
            ).order_by("id").limit(self.batch_size)
            remaining = self.batch_size - len(never)
            if remaining <= 0:
                return list(never)
            due = await ReportSetting.filter(
                weekly_reports_enabled=True, last_report_at__lte=now - REPORT_INTERVAL
            ).order_by("last_report_at", "id").limit(remaining)
        return list(never) + list(due)

    async def send_report(self, setting: ReportSetting, now: datetime) -> bool:
        domains = await self.repository.domains_for_user(setting.user_id)
        total = await self.repository.count_index_links(domains)

        token = uuid.uuid4().hex
        email = build_report_email(
            total,
            report_url=f"{self.site_url}/dashboard",
            settings_url=f"{self.site_url}/dashboard/settings?tab=notifications&source=weekly_report",
            pixel_url=f"{self.site_url}/api/email/open.gif?token={token}",
        )
        result = await self.email.send(setting.email, email.subject, email.html, email.text)

        await best_effort(
            EmailSend.create(
                user_id=setting.user_id,
                email=setting.email,
                type="weekly_report",
                token=token,
                sent_at=now,
                total_backlinks=total,
                ok=result.ok,
                error=result.error,
            ),
            f"email log for {setting.user_id}",
        )

        with storage_errors("stamp report setting"):
            setting.last_report_at = now
            await setting.save(update_fields=["last_report_at"])

        REPORTS_SENT.labels(outcome="ok" if result.ok else "failed").inc()
        if not result.ok:
            logger.warning(f"[weekly-report] Email to {setting.email} failed: {result.error}")
        return result.ok

    async def run(self) -> dict:
        now = self.clock()
        settings = await self.due_settings(now)

        sent = 0
        failed: List[str] = []
        for setting in settings:
            try:
                if await self.send_report(setting, now):
                    sent += 1
            except LinkscanError as exc:
                logger.error(f"[weekly-report] {setting.user_id} failed: {exc}")
                failed.append(setting.user_id)

        logger.info(f"[weekly-report] {len(settings)} due, {sent} sent, {len(failed)} failed")
        return {"ok": True, "due": len(settings), "sent": sent, "failed": failed}

    async def record_open(self, token: str) -> bool:
        """Stamp the first open of the email carrying ``token``."""
        if not token:
            return False
        with storage_errors("record email open"):
            updated = await EmailSend.filter(token=token, opened_at__isnull=True).update(opened_at=self.clock())
        return updated > 0
