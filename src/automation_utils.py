#!/usr/bin/env python3
"""
Shared helpers: logging setup and the clock used for every wait.
"""

import asyncio
import logging
import time
from logging.handlers import RotatingFileHandler
from typing import Optional


def setup_logging(log_file: Optional[str] = 'automation.log', level: int = logging.INFO) -> logging.Logger:
    """Configure application logging to file and console.

    Returns:
        Logger: The ``flow`` logger; modules log through its children.
    """
    app_logger = logging.getLogger('flow')
    if app_logger.handlers:
        return app_logger
    app_logger.setLevel(level)
    # Scheduler job errors land in the same file and console as app logs.
    scheduler_logger = logging.getLogger('apscheduler')
    scheduler_logger.setLevel(logging.WARNING)
    fmt = logging.Formatter('%(asctime)s %(levelname)s %(message)s')
    handlers = []
    if log_file:
        app_file = RotatingFileHandler(log_file, maxBytes=10**7, backupCount=5, encoding='utf-8')
        handlers.append(app_file)
    handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(fmt)
        app_logger.addHandler(handler)
        scheduler_logger.addHandler(handler)
    return app_logger


class Clock:
    """Wall/monotonic time and cooperative sleeps. Tests swap in a virtual clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def time_ms(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
