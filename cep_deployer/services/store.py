"""
SQLAlchemy-backed definition store.

One store instance serves one definition kind. Every public method opens
its own session and commits (or rolls back) before returning, so each
call is atomic on its own and no transaction spans two calls. Records
leave the store as frozen ``DefinitionRecord`` snapshots.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..core.errors import ConcurrentModification, DefinitionNotFound, NameConflict
from ..models.definition import Definition, DefinitionKind
from ..models.dispatch_outbox import DispatchOutbox
from .lifecycle import DefinitionRecord, Message


logger = logging.getLogger("definition_store")


def to_record(row: Definition) -> DefinitionRecord:
    return DefinitionRecord(
        id=row.id,
        kind=DefinitionKind(row.kind),
        name=row.name,
        content=row.content,
        ready_to_deploy=bool(row.ready_to_deploy),
        deployed=bool(row.deployed),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DefinitionStore:
    """Persistence for definitions of a single kind."""

    def __init__(self, session_factory: sessionmaker, kind: DefinitionKind) -> None:
        self.session_factory = session_factory
        self.kind = DefinitionKind(kind)

    def _load(self, db: Session, definition_id: int) -> Definition:
        row = db.get(Definition, definition_id)
        if row is None or row.kind != self.kind.value:
            raise DefinitionNotFound(
                f"{self.kind.label} {definition_id} not found",
                definition_id=definition_id,
            )
        return row

    def _name_taken(self, db: Session, name: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Definition.id).where(Definition.kind == self.kind.value, Definition.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Definition.id != exclude_id)
        return db.execute(stmt.limit(1)).first() is not None

    def create(self, name: str, content: str) -> DefinitionRecord:
        with self.session_factory() as db:
            if self._name_taken(db, name):
                raise NameConflict(name)
            row = Definition(
                kind=self.kind.value,
                name=name,
                content=content,
                ready_to_deploy=False,
                deployed=False,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                # Lost a race with a concurrent create of the same name.
                db.rollback()
                raise NameConflict(name) from exc
            db.refresh(row)
            logger.debug("Created %s id=%s name=%s", self.kind.value, row.id, row.name)
            return to_record(row)

    def get(self, definition_id: int) -> DefinitionRecord:
        with self.session_factory() as db:
            return to_record(self._load(db, definition_id))

    def find_by_name(self, name: str) -> list[DefinitionRecord]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(Definition)
                .where(Definition.kind == self.kind.value, Definition.name == name)
                .order_by(Definition.id.asc())
            ).all()
            return [to_record(r) for r in rows]

    def list_all(self) -> list[DefinitionRecord]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(Definition).where(Definition.kind == self.kind.value).order_by(Definition.id.asc())
            ).all()
            return [to_record(r) for r in rows]

    def update(
        self,
        record: DefinitionRecord,
        *,
        messages: Iterable[Message] = (),
        principal: Optional[str] = None,
    ) -> DefinitionRecord:
        """Overwrite the stored row with ``record``.

        The write only applies if the row still carries ``record.version``.
        ``messages`` are appended to the dispatch outbox in the same
        transaction.
        """
        with self.session_factory() as db:
            row = self._load(db, record.id)
            if row.version != record.version:
                raise ConcurrentModification(
                    f"{self.kind.label} {record.id} changed since it was read "
                    f"(expected version {record.version}, found {row.version})",
                    definition_id=record.id,
                )
            if record.name != row.name and self._name_taken(db, record.name, exclude_id=record.id):
                raise NameConflict(record.name, definition_id=record.id)
            row.name = record.name
            row.content = record.content
            row.ready_to_deploy = record.ready_to_deploy
            row.deployed = record.deployed
            for message in messages:
                db.add(
                    DispatchOutbox(
                        kind=self.kind.value,
                        definition_id=record.id,
                        queue=message.queue,
                        body=message.body,
                        principal=principal,
                        status="PENDING",
                        attempts=0,
                    )
                )
            try:
                db.commit()
            except StaleDataError as exc:
                db.rollback()
                raise ConcurrentModification(
                    f"{self.kind.label} {record.id} changed while it was being written",
                    definition_id=record.id,
                ) from exc
            except IntegrityError as exc:
                db.rollback()
                raise NameConflict(record.name, definition_id=record.id) from exc
            db.refresh(row)
            return to_record(row)

    def delete(self, definition_id: int, *, expected_version: Optional[int] = None) -> None:
        with self.session_factory() as db:
            row = self._load(db, definition_id)
            if expected_version is not None and row.version != expected_version:
                raise ConcurrentModification(
                    f"{self.kind.label} {definition_id} changed since it was read",
                    definition_id=definition_id,
                )
            db.delete(row)
            try:
                db.commit()
            except StaleDataError as exc:
                db.rollback()
                raise ConcurrentModification(
                    f"{self.kind.label} {definition_id} changed while it was being deleted",
                    definition_id=definition_id,
                ) from exc
