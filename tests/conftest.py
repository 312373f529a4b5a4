import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from linkscan.storage.postgres.postgres_init import close_db, init_db


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host settings out of the tests."""

    # Clear every variable the config layer reads so tests start from the
    # defaults unless they override values via monkeypatch.
    for key in [
        "DATABASE_URL",
        "POSTGRES_URL",
        "LINKSCAN_CONFIG",
        "LINKSCAN_ENV_FILE",
        "LINKSCAN_JOB",
        "USER_AGENT",
        "RENDER_TOKEN",
        "CRON_SECRET",
        "MAX_PAGES",
        "MAX_DEPTH",
        "MAX_LINKS",
        "PLAN_LIMIT_PERSONAL",
        "EMAIL_API_KEY",
        "EMAIL_FROM",
    ]:
        monkeypatch.delenv(key, raising=False)

    # no stray .env from the working directory
    monkeypatch.setenv("LINKSCAN_ENV_FILE", os.devnull)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with every table created."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()
