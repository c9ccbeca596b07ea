"""Logging setup for processes embedding a consumer: level from settings, key=value messages."""
import logging
import sys
import time

from redis_stream.settings import settings


def configure_logging(level: str | None = None) -> None:
    level_no = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    # UTC, without touching other formatters in the process
    formatter.converter = time.gmtime
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=level_no, handlers=[handler])
