"""
Outbox relay worker process entrypoint.

Run with:

    python -m cep_deployer.worker
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .core.config import settings
from .core.db import SessionLocal
from .core.errors import guarded_call
from .core.logging_config import setup_logging
from .services.dispatcher import MessageDispatcher, build_dispatcher
from .services.outbox_relay import pending_count, process_outbox_batch


logger = logging.getLogger("worker")


def run_once(
    session_factory: sessionmaker,
    dispatcher: MessageDispatcher,
    *,
    max_attempts: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> int:
    with session_factory() as db:
        return process_outbox_batch(
            db,
            dispatcher,
            max_attempts=max_attempts or settings.outbox_max_attempts,
            batch_size=batch_size or settings.outbox_batch_size,
        )


def run_forever(
    session_factory: sessionmaker,
    dispatcher: MessageDispatcher,
    *,
    interval_sec: float,
    stop: Optional[threading.Event] = None,
) -> None:
    stop = stop or threading.Event()
    while not stop.is_set():
        attempted = guarded_call(
            "Outbox pass",
            lambda: run_once(session_factory, dispatcher),
            fallback=0,
            logger=logger,
            context={"transport": dispatcher.transport},
        )
        if attempted:
            with session_factory() as db:
                logger.info("Outbox pass attempted=%s pending=%s", attempted, pending_count(db))
        stop.wait(interval_sec)


def main() -> int:
    setup_logging()
    if settings.dispatch_mode != "outbox":
        logger.warning("DISPATCH_MODE=%s; the relay only drains rows left by outbox mode", settings.dispatch_mode)
    dispatcher = build_dispatcher(settings)
    logger.info(
        "Worker booted pid=%s transport=%s interval=%ss",
        os.getpid(),
        dispatcher.transport,
        settings.outbox_poll_interval_sec,
    )
    try:
        run_forever(SessionLocal, dispatcher, interval_sec=settings.outbox_poll_interval_sec)
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
