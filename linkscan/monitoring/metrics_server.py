from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Fetch Metrics
# -------------------------

FETCH_REQUESTS = Counter(
    "linkscan_fetch_requests_total",
    "Page fetch attempts",
    ["strategy"],
)

FETCH_FAILURES = Counter(
    "linkscan_fetch_failures_total",
    "Failed page fetches",
    ["strategy", "kind"],
)

FETCH_LATENCY = Histogram(
    "linkscan_fetch_latency_seconds",
    "Time to fetch a page",
    ["strategy"],
)

# -------------------------
# Crawl Metrics
# -------------------------

PAGES_CRAWLED = Counter(
    "linkscan_pages_crawled_total",
    "Pages successfully fetched and parsed",
)

LINKS_COLLECTED = Counter(
    "linkscan_links_collected_total",
    "Off-domain link observations collected",
)

SKIPPED_LINKS = Counter(
    "linkscan_skipped_links_total",
    "Same-domain links not queued",
    ["reason"],
)

CRAWLS_IN_PROGRESS = Gauge(
    "linkscan_crawls_in_progress",
    "Crawls currently running",
)

# -------------------------
# Pipeline Metrics
# -------------------------

SCANS = Counter(
    "linkscan_scans_total",
    "On-demand scans by mode and outcome",
    ["mode", "outcome"],
)

QUOTA_REJECTIONS = Counter(
    "linkscan_quota_rejections_total",
    "Pro scans rejected by the daily quota",
)

REINDEXED_TARGETS = Counter(
    "linkscan_reindexed_targets_total",
    "Targets processed by the reindex job",
    ["outcome"],
)

REPORTS_SENT = Counter(
    "linkscan_reports_sent_total",
    "Weekly report emails",
    ["outcome"],
)

TOXIC_SWEEPS = Counter(
    "linkscan_toxic_sweeps_total",
    "Scheduled toxic-link sweeps",
    ["outcome"],
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp refuses a charset inside content_type
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


async def start_metrics_server(port=8000):
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    return runner, site
