import os
import sys

from loguru import logger

_logger_initialized = False
_sink_ids: list[int] = []

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | job={extra[job]} | {message}"


def setup_logger(log_level: str = "INFO", log_path: str | None = "/data/logs/linkscan.log", job: str | None = None):
    """Install the file and console sinks once and return a logger bound to ``job``."""
    global _logger_initialized, _sink_ids

    resolved_job = job or os.getenv("LINKSCAN_JOB") or "api"

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"job": resolved_job})

        if log_path:
            os.makedirs(os.path.dirname(log_path), exist_ok=True)
            _sink_ids.append(
                logger.add(
                    log_path,
                    rotation="10 MB",
                    retention="7 days",
                    level=log_level,
                    format=LOG_FORMAT,
                )
            )

        _sink_ids.append(
            logger.add(sys.stderr, colorize=True, level=log_level, format=LOG_FORMAT)
        )
        _logger_initialized = True

    return logger.bind(job=resolved_job)
