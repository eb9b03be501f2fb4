"""
MeshGate — Logging Configuration
=================================

What:  One logging setup shared by the gateway and both service processes.
How:   Root logger → stdout, ISO timestamps, and a filter that stamps every
       record with the current request ID (empty outside a request).
When:  Called once at process startup, before anything else logs.
"""

import logging
import sys

from meshgate.config import settings
from meshgate.middleware.request_id import request_id_var

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"


class RequestIdFilter(logging.Filter):
    """Copies the ContextVar request ID onto the record as `request_id`."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("") or "-"
        return True


def setup_logging(service_name: str = "gateway") -> None:
    """
    Configure logging for this process.

    Args:
        service_name: Logged once at startup to tell interleaved container
                      output apart.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Third-party libraries that log every operation at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging configured for %s (level=%s)", service_name, settings.log_level)
