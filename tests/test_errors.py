import httpx
import pytest

from linkscan.errors import (
    InvalidInput,
    QuotaExceeded,
    StorageFailure,
    UpstreamBlocked,
    UpstreamTransient,
    best_effort,
    categorize_error,
)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (UpstreamBlocked("403", url="https://x.com"), "blocked"),
        (httpx.ReadTimeout("slow"), "network_timeout"),
        (httpx.ConnectError("refused"), "connection_error"),
        (UpstreamTransient("500", url="https://x.com", status_code=500), "http_error"),
        (UpstreamTransient("reset", url="https://x.com"), "connection_error"),
        (StorageFailure("down"), "db_error"),
        (ValueError("bad markup"), "parse_error"),
        (RuntimeError("?"), "unexpected"),
    ],
)
def test_categorize_error(exc, expected):
    assert categorize_error(exc) == expected


def test_user_messages_and_statuses():
    assert InvalidInput("Missing url").user_message == "Missing url"
    assert InvalidInput("Missing url").http_status == 400
    assert QuotaExceeded(limit=3, used=3).http_status == 429
    assert str(QuotaExceeded()) == "PROSCAN_LIMIT_EXCEEDED"
    assert UpstreamTransient("x").http_status == 502


@pytest.mark.anyio
async def test_best_effort_swallows_and_returns_none():
    async def broken():
        raise StorageFailure("table missing")

    async def works():
        return 7

    assert await best_effort(broken(), "log write") is None
    assert await best_effort(works(), "log write") == 7
