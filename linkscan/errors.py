"""Error taxonomy shared by the scan pipeline, batch jobs and the HTTP API.

Every error carries the HTTP status the API answers with and a message that is
safe to show to end users; ``str(exc)`` stays the technical detail for logs.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

import httpx
from loguru import logger
from tortoise.exceptions import BaseORMException


T = TypeVar("T")


class LinkscanError(Exception):
    http_status = 500
    user_message = "Something went wrong. Please try again."


class InvalidInput(LinkscanError):
    http_status = 400

    @property
    def user_message(self) -> str:
        return str(self) or "Invalid request."


class AuthRequired(LinkscanError):
    http_status = 401
    user_message = "Please sign in to use this feature."


class Forbidden(LinkscanError):
    http_status = 403
    user_message = "You are not allowed to run this operation."


class QuotaExceeded(LinkscanError):
    http_status = 429
    user_message = "You have reached your daily Pro Scan limit. It resets at midnight UTC."

    def __init__(self, message: str = "PROSCAN_LIMIT_EXCEEDED", *, limit: int = 0, used: int = 0, reset_at=None):
        super().__init__(message)
        self.limit = limit
        self.used = used
        self.reset_at = reset_at


class UpstreamError(LinkscanError):
    """A page could not be retrieved."""

    kind = "upstream"

    def __init__(self, message: str, *, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UpstreamBlocked(UpstreamError):
    kind = "blocked"
    http_status = 403
    user_message = (
        "This website is protected by its hosting or DNS provider and cannot be "
        "scanned due to security restrictions."
    )


class UpstreamTransient(UpstreamError):
    kind = "transient"
    http_status = 502
    user_message = "We could not reach this website right now. Please try again in a few minutes."


class StorageFailure(LinkscanError):
    http_status = 500
    user_message = "We could not save your results. Please try again."


class FeatureUnavailable(LinkscanError):
    http_status = 503
    user_message = "Pro scans are not available right now. Please try a basic scan."


def categorize_error(exc: BaseException) -> str:
    if isinstance(exc, UpstreamBlocked):
        return "blocked"
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "network_timeout"
    if isinstance(exc, httpx.TransportError):
        return "connection_error"
    if isinstance(exc, UpstreamTransient):
        return "http_error" if exc.status_code else "connection_error"
    if isinstance(exc, (StorageFailure, BaseORMException)):
        return "db_error"
    if isinstance(exc, (ValueError, UnicodeDecodeError, AttributeError)):
        return "parse_error"
    return "unexpected"


async def best_effort(operation: Awaitable[T], what: str) -> Optional[T]:
    """Await a non-critical write; failures are logged and never propagate."""
    try:
        return await operation
    except Exception as exc:
        logger.warning(f"[best-effort] {what} failed: {exc}")
        return None
