import asyncio
import signal

from aiohttp import web
from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from linkscan.api.server import create_app
from linkscan.monitoring.metrics_server import start_metrics_server
from linkscan.services import build_services
from linkscan.storage.postgres.postgres_init import close_db, init_db
from linkscan.utils.config_loader import load_config
from linkscan.utils.logger import setup_logger


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting linkscan...")

    await init_db(config.database_url)

    services = build_services(config)
    if not config.render_token:
        logger.warning("No rendering service token configured; pro scans are disabled.")
    if not config.cron_secret:
        logger.warning("No cron secret configured; batch endpoints are disabled.")

    # ---- HTTP API ----
    api_runner = web.AppRunner(create_app(services))
    await api_runner.setup()
    await web.TCPSite(api_runner, "0.0.0.0", config.api_port).start()
    logger.info(f"API listening on :{config.api_port}")

    # ---- Metrics Server ----
    metrics_runner, _ = await start_metrics_server(port=config.metrics_port)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info("linkscan started successfully.")

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await api_runner.cleanup()
        await metrics_runner.cleanup()
        await close_db()
        logger.info("linkscan stopped.")


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
