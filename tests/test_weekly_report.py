import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from linkscan.crawl_engine import CrawlResult, LinkObservation
from linkscan.email_client import EmailClient, EmailResult
from linkscan.jobs.reindex_job import ReindexJob
from linkscan.jobs.weekly_report_job import WeeklyReportJob, build_report_email
from linkscan.storage.backlink_repository import BacklinkRepository
from linkscan.storage.models import EmailSend, ReportSetting
from linkscan.utils.clock import as_utc


NOW = datetime(2024, 3, 10, 6, tzinfo=timezone.utc)


class RecordingEmail:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send(self, to, subject, html, text):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if to in self.fail_for:
            return EmailResult(ok=False, error="HTTP 422")
        return EmailResult(ok=True, id=f"msg-{len(self.sent)}")


async def seed_index(repo: BacklinkRepository, user_id: str, domain: str, links: int):
    await repo.ensure_target(domain, user_id)
    observations = [
        LinkObservation(
            source_page=f"https://{domain}/",
            target_url=f"https://ref{i}.org/",
            target_domain=f"ref{i}.org",
            anchor=None,
            rel=None,
            nofollow=False,
            sponsored=False,
            ugc=False,
            link_type="editorial",
        )
        for i in range(links)
    ]
    result = CrawlResult(domain, f"https://{domain}", links=observations, pages_crawled=1, pages_fetched=1)
    await repo.record_scan(result, created_at=NOW - timedelta(days=1), user_id=user_id)


def test_build_report_email_formats_total():
    email = build_report_email(1234, "https://site.test/dashboard", "https://site.test/settings", "https://site.test/p.gif")

    assert "1,234" in email.html
    assert "1,234" in email.text
    assert "https://site.test/dashboard" in email.text


@pytest.mark.asyncio
async def test_weekly_report_sends_to_due_users(db):
    repo = BacklinkRepository()
    await seed_index(repo, "u1", "one.com", 3)
    await seed_index(repo, "u1", "two.com", 2)
    await ReindexJob(repo, clock=lambda: NOW).run()

    await ReportSetting.create(user_id="u1", email="u1@example.com")
    await ReportSetting.create(user_id="u2", email="u2@example.com", last_report_at=NOW - timedelta(days=8))
    await ReportSetting.create(user_id="u3", email="u3@example.com", last_report_at=NOW - timedelta(days=2))
    await ReportSetting.create(user_id="u4", email="u4@example.com", weekly_reports_enabled=False)

    email = RecordingEmail()
    summary = await WeeklyReportJob(repo, email, "https://site.test/", clock=lambda: NOW).run()

    assert summary == {"ok": True, "due": 2, "sent": 2, "failed": []}
    assert [message["to"] for message in email.sent] == ["u1@example.com", "u2@example.com"]
    assert "Total backlinks: 5" in email.sent[0]["text"]
    assert "Total backlinks: 0" in email.sent[1]["text"]

    setting = await ReportSetting.get(user_id="u1")
    assert as_utc(setting.last_report_at) == NOW
    assert await EmailSend.filter(type="weekly_report", ok=True).count() == 2


@pytest.mark.asyncio
async def test_failed_email_is_logged_and_batch_continues(db):
    repo = BacklinkRepository()
    await ReportSetting.create(user_id="bad", email="bad@example.com")
    await ReportSetting.create(user_id="good", email="good@example.com")

    email = RecordingEmail(fail_for={"bad@example.com"})
    summary = await WeeklyReportJob(repo, email, "https://site.test", clock=lambda: NOW).run()

    assert summary["due"] == 2
    assert summary["sent"] == 1
    failed_log = await EmailSend.get(user_id="bad")
    assert failed_log.ok is False
    assert failed_log.error == "HTTP 422"


@pytest.mark.asyncio
async def test_email_client_posts_to_provider():
    seen = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "abc"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = EmailClient("https://mail.test/emails", "key-1", "Reports <r@site.test>", client=client)
        result = await sender.send("to@example.com", "Hi", "<p>Hi</p>", "Hi")

    assert result == EmailResult(ok=True, id="abc")
    assert seen["auth"] == "Bearer key-1"
    assert seen["payload"]["to"] == ["to@example.com"]
    assert seen["payload"]["from"] == "Reports <r@site.test>"


@pytest.mark.asyncio
async def test_email_client_reports_provider_errors():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sender = EmailClient("https://mail.test/emails", "key-1", "r@site.test", client=client)
        result = await sender.send("to@example.com", "Hi", "<p>Hi</p>", "Hi")

    assert result.ok is False
    assert result.error == "HTTP 500"


@pytest.mark.asyncio
async def test_unconfigured_email_client_does_not_send():
    result = await EmailClient("https://mail.test/emails", None, None).send("a@b.c", "s", "h", "t")

    assert result.ok is False


@pytest.mark.asyncio
async def test_record_open_keeps_the_first_open(db):
    repo = BacklinkRepository()
    await EmailSend.create(user_id="u1", email="u1@example.com", type="weekly_report", token="tok", sent_at=NOW)
    later = NOW + timedelta(hours=2)

    assert await WeeklyReportJob(repo, RecordingEmail(), "https://site.test", clock=lambda: NOW).record_open("tok") is True
    assert await WeeklyReportJob(repo, RecordingEmail(), "https://site.test", clock=lambda: later).record_open("tok") is False
    assert await WeeklyReportJob(repo, RecordingEmail(), "https://site.test", clock=lambda: NOW).record_open("nope") is False

    assert as_utc((await EmailSend.get(token="tok")).opened_at) == NOW
