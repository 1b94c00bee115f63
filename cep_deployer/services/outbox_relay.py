"""
Outbox relay: delivers dispatch outbox rows to the broker with retries.

Rows are delivered oldest first. For any one definition a row is never
sent while an earlier row of that definition is still undelivered, so an
edit of an active definition always reaches the engine as undeploy(old)
followed by deploy(new), even across retries.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.dispatch_outbox import DispatchOutbox
from .dispatcher import MessageDispatcher
from .lifecycle import Message


logger = logging.getLogger("outbox_relay")

UNDELIVERED = ("PENDING", "RETRYING")


def _backoff_seconds(attempt: int) -> int:
    schedule = [5, 15, 60, 300, 900]
    idx = min(max(attempt - 1, 0), len(schedule) - 1)
    return schedule[idx]


def _as_utc(ts: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def process_outbox_batch(
    db: Session,
    dispatcher: MessageDispatcher,
    *,
    max_attempts: int = 8,
    batch_size: int = 50,
    now: Optional[datetime.datetime] = None,
) -> int:
    """Attempt delivery of up to ``batch_size`` undelivered rows.

    Returns the number of rows for which a publish was attempted.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    query = (
        select(DispatchOutbox)
        .where(DispatchOutbox.status.in_(UNDELIVERED))
        .order_by(DispatchOutbox.id.asc())
        .limit(batch_size)
    )
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    rows = db.scalars(query).all()
    blocked: set[tuple[str, int]] = set()
    attempted = 0

    for row in rows:
        key = (row.kind, row.definition_id)
        if key in blocked:
            continue
        due_at = _as_utc(row.next_retry_at)
        if due_at is not None and due_at > now:
            blocked.add(key)
            continue

        attempted += 1
        row.attempts = int(row.attempts or 0) + 1
        try:
            dispatcher.send(Message(queue=row.queue, body=row.body))
        except Exception as exc:
            blocked.add(key)
            row.last_error = str(exc)
            if row.attempts >= max_attempts:
                row.status = "FAILED"
                row.next_retry_at = None
                logger.error(
                    "Outbox delivery gave up id=%s kind=%s definition_id=%s queue=%s attempts=%s err=%s",
                    row.id,
                    row.kind,
                    row.definition_id,
                    row.queue,
                    row.attempts,
                    exc,
                )
            else:
                row.status = "RETRYING"
                row.next_retry_at = now + datetime.timedelta(seconds=_backoff_seconds(row.attempts))
                logger.warning(
                    "Outbox delivery failed id=%s kind=%s definition_id=%s queue=%s attempts=%s err=%s",
                    row.id,
                    row.kind,
                    row.definition_id,
                    row.queue,
                    row.attempts,
                    exc,
                )
        else:
            row.status = "SENT"
            row.sent_at = datetime.datetime.now(datetime.timezone.utc)
            row.next_retry_at = None
            row.last_error = None
            logger.info(
                "Outbox delivered id=%s kind=%s definition_id=%s queue=%s",
                row.id,
                row.kind,
                row.definition_id,
                row.queue,
            )

        # Commit per row; a SENT row must never be picked up again.
        try:
            db.add(row)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to persist outbox result id=%s err=%s", row.id, exc)
            blocked.add(key)

    return attempted


def pending_count(db: Session) -> int:
    stmt = select(func.count()).select_from(DispatchOutbox).where(DispatchOutbox.status.in_(UNDELIVERED))
    return int(db.scalar(stmt) or 0)
