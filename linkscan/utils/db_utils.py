"""Helpers for database connection strings.

Hosted Postgres providers hand out DSNs in libpq (``postgres://``) or
SQLAlchemy (``postgresql+psycopg2://``) form, while Tortoise ORM wants the
``asyncpg://`` scheme. SQLite URLs are used as-is (tests run on
``sqlite://:memory:``).
"""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit


def to_tortoise_url(url: str) -> str:
    """Convert a PostgreSQL DSN to the ``asyncpg://`` scheme understood by Tortoise."""

    if url.startswith("sqlite://") or url.startswith("asyncpg://"):
        return url
    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    raise ValueError(f"Unsupported database URL scheme: {url.split('://', 1)[0]}")


def mask_dsn(url: str) -> str:
    """Hide the password part of a DSN so it can be logged."""

    parts = urlsplit(url)
    if not parts.password:
        return url

    userinfo = f"{parts.username}:***" if parts.username else "***"
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))
