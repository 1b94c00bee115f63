"""
Logging setup shared by the API process and the outbox worker.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Client libraries that log every frame at INFO.
NOISY_LOGGERS = ("pika", "paho", "sqlalchemy.engine")


def resolve_level(raw: Optional[str], default: int = logging.INFO) -> int:
    if not raw:
        return default
    value = logging.getLevelName(raw.strip().upper())
    return value if isinstance(value, int) else default


def setup_logging(level: Optional[int] = None, log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    ``level`` falls back to ``LOG_LEVEL`` from the environment, then INFO.
    When ``log_file`` is given, records are also appended there.
    """
    if level is None:
        level = resolve_level(os.getenv("LOG_LEVEL"))
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
