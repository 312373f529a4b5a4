from __future__ import annotations

import hmac
import json
from typing import Optional

from aiohttp import web
from loguru import logger

from linkscan.errors import AuthRequired, Forbidden, InvalidInput, LinkscanError, best_effort
from linkscan.scan_service import Caller, ScanRequest
from linkscan.services import Services
from linkscan.utils.url_utils import normalize_domain


SERVICES_KEY = web.AppKey("services", Services)

# 1x1 transparent GIF
OPEN_PIXEL = bytes.fromhex(
    "47494638396101000100800000ffffff00000021f90401000001002c00000000010001000002024401003b"
)


def resolve_caller(request: web.Request, cron_secret: Optional[str]) -> Caller:
    """Identity of the request: user id header/param, admin via the cron secret."""
    user_id = (
        request.headers.get("X-User-Id")
        or request.query.get("u")
        or request.query.get("userId")
        or None
    )

    presented = request.query.get("secret") or ""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        presented = auth[len("Bearer ") :]

    is_admin = bool(cron_secret) and bool(presented) and hmac.compare_digest(presented, cron_secret)
    return Caller(user_id=user_id.strip() if user_id else None, is_admin=is_admin)


def _services(request: web.Request) -> Services:
    return request.app[SERVICES_KEY]


def _caller(request: web.Request) -> Caller:
    return resolve_caller(request, _services(request).config.cron_secret)


def _require_admin(request: web.Request) -> None:
    if not _caller(request).is_admin:
        raise Forbidden("cron secret missing or wrong")


def _require_user(request: web.Request) -> str:
    caller = _caller(request)
    if not caller.user_id:
        raise AuthRequired("missing user id")
    return caller.user_id


def _domain_param(request: web.Request, *names: str) -> str:
    raw = next((request.query.get(name) for name in names if request.query.get(name)), "")
    if not raw:
        raise InvalidInput(f"Missing ?{names[0]}= parameter")
    domain = normalize_domain(raw)
    if domain is None:
        raise InvalidInput("Please enter a valid domain or URL")
    return domain


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except LinkscanError as exc:
        if exc.http_status >= 500:
            logger.error(f"[api] {request.method} {request.path}: {exc}")
        return web.json_response(
            {"ok": False, "error": exc.user_message, "technical": str(exc) or exc.__class__.__name__},
            status=exc.http_status,
        )
    except Exception as exc:
        logger.exception(f"[api] {request.method} {request.path} crashed")
        return web.json_response(
            {"ok": False, "error": "Unexpected error. Please try again.", "technical": str(exc)},
            status=500,
        )


# -------------------------------------------------------
# Scans
# -------------------------------------------------------

async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidInput("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    return body


async def start_scan(request: web.Request) -> web.Response:
    body = await _json_body(request)

    target = body.get("url") or body.get("domain") or ""
    if not target:
        raise InvalidInput("Missing url")

    response = await _services(request).scans.scan(
        ScanRequest(target=str(target), mode=str(body.get("mode") or "basic")),
        _caller(request),
    )
    return web.json_response(response.as_dict())


async def recent_scans(request: web.Request) -> web.Response:
    user_id = _require_user(request)
    scans = await _services(request).repository.recent_scans(user_id)
    return web.json_response(
        {
            "scans": [
                {
                    "id": scan.id,
                    "domain": scan.domain,
                    "total_backlinks": scan.total_backlinks,
                    "ref_domains": scan.ref_domains,
                    "mode": scan.mode,
                    "created_at": scan.created_at.isoformat(),
                }
                for scan in scans
            ]
        }
    )


async def proscan_quota(request: web.Request) -> web.Response:
    user_id = _require_user(request)
    ledger = _services(request).ledger
    limit = await ledger.limit_for(user_id)
    status = await ledger.status(user_id, limit)
    return web.json_response({"userId": user_id, **status.as_dict()})


# -------------------------------------------------------
# Index and dashboard
# -------------------------------------------------------

async def backlink_index(request: web.Request) -> web.Response:
    domain = _domain_param(request, "d", "domain")
    return web.json_response(await _services(request).metrics.index_summary(domain))


async def dashboard_summary(request: web.Request) -> web.Response:
    domain = _domain_param(request, "target")
    return web.json_response(await _services(request).metrics.summary(domain))


async def impact_trend(request: web.Request) -> web.Response:
    domain = _domain_param(request, "target")
    try:
        days = int(request.query.get("days") or 7)
    except ValueError as exc:
        raise InvalidInput("days must be a number") from exc
    series = await _services(request).metrics.trend(domain, days)
    return web.json_response({"target": domain, "series": series})


# -------------------------------------------------------
# Batch jobs (cron)
# -------------------------------------------------------

async def run_reindex(request: web.Request) -> web.Response:
    _require_admin(request)
    outcomes = await _services(request).reindex.run()
    if not outcomes:
        return web.json_response({"ok": True, "message": "No backlink targets to index."})
    return web.json_response({"ok": True, "processed": [outcome.as_dict() for outcome in outcomes]})


async def run_indexer(request: web.Request) -> web.Response:
    _require_admin(request)
    results = await _services(request).indexer.run()
    if not results:
        return web.json_response({"ok": True, "message": "No targets to index right now."})
    return web.json_response({"ok": True, "processed": len(results), "results": results})


async def run_weekly_report(request: web.Request) -> web.Response:
    _require_admin(request)
    return web.json_response(await _services(request).reports.run())


async def run_toxic_sweeps(request: web.Request) -> web.Response:
    _require_admin(request)
    return web.json_response(await _services(request).sweeps.run())


# -------------------------------------------------------
# Toxic sweep settings
# -------------------------------------------------------

async def save_toxic_sweep_settings(request: web.Request) -> web.Response:
    body = await _json_body(request)
    caller = _caller(request)
    user_id = caller.user_id or str(body.get("userId") or "").strip()
    if not user_id:
        raise AuthRequired("missing user id")

    domain = body.get("domain")
    if not domain:
        raise InvalidInput("Missing domain")

    cadence = body.get("cadenceDays")
    if cadence is not None and (isinstance(cadence, bool) or not isinstance(cadence, int)):
        raise InvalidInput("cadenceDays must be a whole number of days")

    setting = await _services(request).sweeps.save_settings(
        user_id, str(domain), enabled=bool(body.get("enabled", True)), cadence_days=cadence
    )
    return web.json_response(
        {
            "ok": True,
            "settings": {
                "userId": setting.user_id,
                "domain": setting.domain,
                "enabled": setting.enabled,
                "cadenceDays": setting.cadence_days,
            },
        }
    )


# -------------------------------------------------------
# Email
# -------------------------------------------------------

async def email_open(request: web.Request) -> web.Response:
    token = request.query.get("token", "")
    await best_effort(_services(request).reports.record_open(token), "email open tracking")
    return web.Response(
        body=OPEN_PIXEL,
        content_type="image/gif",
        headers={"Cache-Control": "no-store, no-cache, must-revalidate"},
    )


async def health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


def create_app(services: Services) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services

    app.router.add_get("/health", health)

    app.router.add_post("/api/backlinks", start_scan)
    app.router.add_get("/api/scans/recent", recent_scans)
    app.router.add_get("/api/proscan/quota", proscan_quota)
    app.router.add_get("/api/backlink-index", backlink_index)
    app.router.add_get("/api/v1/dashboard/summary", dashboard_summary)
    app.router.add_get("/api/v1/dashboard/impact-trend", impact_trend)

    for method in ("GET", "POST"):
        app.router.add_route(method, "/api/cron/reindex", run_reindex)
        app.router.add_route(method, "/api/indexer/run", run_indexer)
    app.router.add_post("/api/weekly-report", run_weekly_report)
    app.router.add_get("/api/email/open.gif", email_open)
    app.router.add_post("/api/toxic-sweeps/settings", save_toxic_sweep_settings)
    app.router.add_post("/api/toxic-sweeps/run", run_toxic_sweeps)

    return app
