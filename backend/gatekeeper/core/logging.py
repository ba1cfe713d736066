"""Logging setup shared by the API process and background jobs."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # APScheduler is chatty at INFO on every run.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
