"""
Definition service: runs lifecycle decisions against the store and broker.

Every operation loads a fresh snapshot, asks the state machine, writes the
store and only then publishes. Failures come back as ``OperationResult``
values; nothing raises out of this layer for expected conditions.

In ``direct`` dispatch mode a publish that fails after the store write has
committed leaves the stored flags ahead of the engine. That case is logged
at WARNING and returned as ``dispatch_unavailable``; it is not reconciled.
In ``outbox`` dispatch mode the messages are committed with the write and
``OutboxRelay`` delivers them.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from ..core.auth import ANONYMOUS
from ..core.errors import DefinitionError, DispatchUnavailable, InvalidDefinition, log_exception
from ..models.definition import DefinitionKind
from .dispatcher import MessageDispatcher
from .lifecycle import DefinitionRecord, Decision, Operation, decide, validate_fields
from .store import DefinitionStore


logger = logging.getLogger("definitions")

DISPATCH_DIRECT = "direct"
DISPATCH_OUTBOX = "outbox"

_PAST_TENSE = {
    Operation.STAGE: "set as ready to deploy",
    Operation.UNSTAGE: "set as not ready to deploy",
    Operation.EDIT: "updated",
    Operation.DEPLOY: "deployed",
    Operation.UNDEPLOY: "undeployed",
    Operation.DELETE: "deleted",
}


@dataclass(frozen=True)
class OperationResult:
    ok: bool
    operation: str
    definition: Optional[DefinitionRecord] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, operation: str, definition: Optional[DefinitionRecord] = None) -> "OperationResult":
        return cls(ok=True, operation=operation, definition=definition)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        detail: Optional[str] = None,
        definition: Optional[DefinitionRecord] = None,
    ) -> "OperationResult":
        return cls(ok=False, operation=operation, definition=definition, error=error, detail=detail)


class KeyedLocks:
    """Per-key mutexes so mutations of one definition queue instead of interleaving."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[object, threading.Lock] = {}
        self._users: dict[object, int] = {}

    @contextmanager
    def hold(self, key: object) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._users[key] -= 1
                if self._users[key] == 0:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class DefinitionService:
    def __init__(
        self,
        store: DefinitionStore,
        dispatcher: MessageDispatcher,
        *,
        dispatch_mode: str = DISPATCH_DIRECT,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        if dispatch_mode not in {DISPATCH_DIRECT, DISPATCH_OUTBOX}:
            raise ValueError(f"Unknown dispatch mode: {dispatch_mode!r}")
        self.store = store
        self.dispatcher = dispatcher
        self.dispatch_mode = dispatch_mode
        self._locks = locks if locks is not None else KeyedLocks()

    @property
    def kind(self) -> DefinitionKind:
        return self.store.kind

    # Queries

    def list_all(self) -> list[DefinitionRecord]:
        return self.store.list_all()

    def find_by_name(self, name: str) -> list[DefinitionRecord]:
        return self.store.find_by_name(name)

    def get_by_id(self, definition_id: int) -> OperationResult:
        try:
            return OperationResult.success("get", self.store.get(definition_id))
        except DefinitionError as exc:
            return OperationResult.failure("get", exc.code, str(exc))

    # Mutations

    def create(self, name: str, content: str, *, principal: str = ANONYMOUS) -> OperationResult:
        invalid = validate_fields(name, content)
        if invalid:
            logger.warning("User %s failed to create %s: %s", principal, self.kind.label, invalid)
            return OperationResult.failure("create", InvalidDefinition.code, invalid)
        try:
            created = self.store.create(name, content)
        except DefinitionError as exc:
            logger.warning("User %s failed to create %s name=%s: %s", principal, self.kind.label, name, exc)
            return OperationResult.failure("create", exc.code, str(exc))
        logger.info(
            "User %s has successfully created %s with id: %s",
            principal,
            self.kind.label,
            created.id,
        )
        return OperationResult.success("create", created)

    def update(
        self,
        definition_id: int,
        *,
        name: str,
        content: str,
        principal: str = ANONYMOUS,
    ) -> OperationResult:
        return self._transition(definition_id, Operation.EDIT, principal, name=name, content=content)

    def stage(self, definition_id: int, *, principal: str = ANONYMOUS) -> OperationResult:
        return self._transition(definition_id, Operation.STAGE, principal)

    def unstage(self, definition_id: int, *, principal: str = ANONYMOUS) -> OperationResult:
        return self._transition(definition_id, Operation.UNSTAGE, principal)

    def deploy(self, definition_id: int, *, principal: str = ANONYMOUS) -> OperationResult:
        return self._transition(definition_id, Operation.DEPLOY, principal)

    def undeploy(self, definition_id: int, *, principal: str = ANONYMOUS) -> OperationResult:
        return self._transition(definition_id, Operation.UNDEPLOY, principal)

    def delete(self, definition_id: int, *, principal: str = ANONYMOUS) -> OperationResult:
        return self._transition(definition_id, Operation.DELETE, principal)

    def _transition(
        self,
        definition_id: int,
        operation: Operation,
        principal: str,
        *,
        name: Optional[str] = None,
        content: Optional[str] = None,
    ) -> OperationResult:
        op = operation.value
        with self._locks.hold((self.kind, definition_id)):
            try:
                current = self.store.get(definition_id)
                decision = decide(current, operation, name=name, content=content)
                if not decision.allowed:
                    logger.warning(
                        "User %s failed to %s %s with id: %s (%s)",
                        principal,
                        op,
                        self.kind.label,
                        definition_id,
                        decision.reason,
                    )
                    return OperationResult.failure(op, decision.code, decision.reason, definition=current)
                if decision.delete:
                    self.store.delete(definition_id, expected_version=current.version)
                    self._audit(principal, operation, definition_id)
                    return OperationResult.success(op, current)
                stored = self._write(decision, principal)
            except DefinitionError as exc:
                logger.warning(
                    "User %s failed to %s %s with id: %s: %s",
                    principal,
                    op,
                    self.kind.label,
                    definition_id,
                    exc,
                )
                return OperationResult.failure(op, exc.code, str(exc))

            if decision.requires_dispatch and self.dispatch_mode == DISPATCH_DIRECT:
                failed = self._dispatch(decision, stored, principal)
                if failed is not None:
                    return failed

        self._audit(principal, operation, definition_id)
        return OperationResult.success(op, stored)

    def _write(self, decision: Decision, principal: str) -> DefinitionRecord:
        if self.dispatch_mode == DISPATCH_OUTBOX:
            return self.store.update(decision.target, messages=decision.messages, principal=principal)
        return self.store.update(decision.target)

    def _dispatch(self, decision: Decision, stored: DefinitionRecord, principal: str) -> Optional[OperationResult]:
        op = decision.operation.value
        for position, message in enumerate(decision.messages):
            try:
                self.dispatcher.send(message)
            except DispatchUnavailable as exc:
                logger.warning(
                    "Store and engine out of sync: %s id=%s committed deployed=%s ready_to_deploy=%s "
                    "but %s message %s/%s was not published (user %s): %s",
                    self.kind.value,
                    stored.id,
                    stored.deployed,
                    stored.ready_to_deploy,
                    message.queue,
                    position + 1,
                    len(decision.messages),
                    principal,
                    exc,
                )
                return OperationResult.failure(op, exc.code, str(exc), definition=stored)
            except Exception as exc:
                log_exception(
                    logger,
                    "Unexpected dispatcher failure",
                    extra={"kind": self.kind.value, "id": stored.id, "queue": message.queue},
                    exc=exc,
                )
                return OperationResult.failure(op, DispatchUnavailable.code, str(exc), definition=stored)
        return None

    def _audit(self, principal: str, operation: Operation, definition_id: int) -> None:
        logger.info(
            "%s with id: %s has been %s by %s",
            self.kind.label.capitalize(),
            definition_id,
            _PAST_TENSE[operation],
            principal,
        )


def build_services(
    session_factory,
    dispatcher: MessageDispatcher,
    *,
    dispatch_mode: str = DISPATCH_DIRECT,
) -> dict[DefinitionKind, DefinitionService]:
    """One service per definition kind, sharing the lock registry and dispatcher."""
    locks = KeyedLocks()
    return {
        kind: DefinitionService(
            DefinitionStore(session_factory, kind),
            dispatcher,
            dispatch_mode=dispatch_mode,
            locks=locks,
        )
        for kind in DefinitionKind
    }
