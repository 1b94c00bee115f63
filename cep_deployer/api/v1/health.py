"""
Health endpoint: database reachability and outbox backlog.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ...services.outbox_relay import pending_count


router = APIRouter(prefix="/api/v1/health", tags=["health"])

logger = logging.getLogger("health")


@router.get("", response_model=dict)
def health(request: Request) -> dict:
    session_factory = request.app.state.session_factory
    dispatcher = request.app.state.dispatcher
    db_ok = True
    pending = None
    try:
        with session_factory() as db:
            db.execute(text("SELECT 1"))
            pending = pending_count(db)
    except SQLAlchemyError as exc:
        logger.warning("Health check database error: %s", exc)
        db_ok = False
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "transport": dispatcher.transport,
        "dispatch_mode": request.app.state.dispatch_mode,
        "outbox_pending": pending,
    }
