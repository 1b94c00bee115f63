"""
Deployable definitions (event types and event patterns).

Both kinds share one table; names are unique per kind. The ``version``
column is SQLAlchemy's optimistic-concurrency counter, so an UPDATE or
DELETE issued from a stale snapshot matches zero rows and fails.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

NAME_MAX_LENGTH = 255
CONTENT_MAX_LENGTH = 2044


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DefinitionKind(str, enum.Enum):
    EVENT_TYPE = "event_type"
    EVENT_PATTERN = "event_pattern"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class Definition(Base):
    __tablename__ = "definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    ready_to_deploy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deployed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (UniqueConstraint("kind", "name", name="uq_definitions_kind_name"),)
    __mapper_args__ = {"version_id_col": version}
