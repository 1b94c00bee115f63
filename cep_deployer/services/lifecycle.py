"""
Deployment state machine for definitions.

Pure decision logic: given a snapshot of a definition and a requested
operation, decide whether the operation is legal and which flag/content
values and broker messages it implies. Nothing here touches the database
or the broker.

States are derived from the two stored flags:

    DRAFT   ready_to_deploy=False deployed=False
    STAGED  ready_to_deploy=True  deployed=False
    ACTIVE  deployed=True (ready_to_deploy may be either)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ..core.errors import IllegalTransition, InvalidDefinition
from ..models.definition import CONTENT_MAX_LENGTH, NAME_MAX_LENGTH, DefinitionKind

DEPLOY_QUEUE = "deploy"
UNDEPLOY_QUEUE = "undeploy"


class DefinitionState(str, enum.Enum):
    DRAFT = "draft"
    STAGED = "staged"
    ACTIVE = "active"


class Operation(str, enum.Enum):
    STAGE = "stage"
    UNSTAGE = "unstage"
    EDIT = "edit"
    DEPLOY = "deploy"
    UNDEPLOY = "undeploy"
    DELETE = "delete"


@dataclass(frozen=True)
class DefinitionRecord:
    """Detached snapshot of a stored definition."""

    id: int
    kind: DefinitionKind
    name: str
    content: str
    ready_to_deploy: bool = False
    deployed: bool = False
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def state(self) -> DefinitionState:
        return state_of(self)


@dataclass(frozen=True)
class Message:
    queue: str
    body: str


@dataclass(frozen=True)
class Decision:
    operation: Operation
    allowed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    # Snapshot carrying the values to persist; None when rejected or deleting.
    target: Optional[DefinitionRecord] = None
    messages: tuple[Message, ...] = ()
    delete: bool = False

    @property
    def requires_dispatch(self) -> bool:
        return bool(self.messages)


def state_of(record: DefinitionRecord) -> DefinitionState:
    # Both flags set comes from staging a deployed definition; the engine has the rule, so it is active.
    if record.deployed:
        return DefinitionState.ACTIVE
    if record.ready_to_deploy:
        return DefinitionState.STAGED
    return DefinitionState.DRAFT


def deploy_message(content: str) -> Message:
    return Message(queue=DEPLOY_QUEUE, body=content)


def undeploy_message(name: str) -> Message:
    return Message(queue=UNDEPLOY_QUEUE, body=name)


def validate_fields(name: Optional[str], content: Optional[str]) -> Optional[str]:
    """Return a rejection reason for bad name/content, or None."""
    if name is None or not name.strip():
        return "name must not be empty"
    if len(name) > NAME_MAX_LENGTH:
        return f"name exceeds {NAME_MAX_LENGTH} characters"
    if content is None or not content.strip():
        return "content must not be empty"
    if len(content) > CONTENT_MAX_LENGTH:
        return f"content exceeds {CONTENT_MAX_LENGTH} characters"
    return None


def _reject(operation: Operation, reason: str, *, code: str = IllegalTransition.code) -> Decision:
    return Decision(operation=operation, allowed=False, reason=reason, code=code)


def _stage(record: DefinitionRecord) -> Decision:
    # Flag flip only; a deployed definition stays deployed and sends nothing.
    return Decision(
        operation=Operation.STAGE,
        allowed=True,
        target=replace(record, ready_to_deploy=True),
    )


def _unstage(record: DefinitionRecord) -> Decision:
    return Decision(
        operation=Operation.UNSTAGE,
        allowed=True,
        target=replace(record, ready_to_deploy=False),
    )


def _edit(record: DefinitionRecord, name: Optional[str], content: Optional[str]) -> Decision:
    state = state_of(record)
    if record.ready_to_deploy:
        return _reject(Operation.EDIT, "definition is staged for deployment and cannot be edited")
    invalid = validate_fields(name, content)
    if invalid:
        return _reject(Operation.EDIT, invalid, code=InvalidDefinition.code)
    target = replace(record, name=name, content=content)
    if state is DefinitionState.ACTIVE:
        # The engine addresses active rules by name, so drop the old one before adding the new.
        return Decision(
            operation=Operation.EDIT,
            allowed=True,
            target=target,
            messages=(undeploy_message(record.name), deploy_message(content)),
        )
    return Decision(operation=Operation.EDIT, allowed=True, target=target)


def _deploy(record: DefinitionRecord) -> Decision:
    return Decision(
        operation=Operation.DEPLOY,
        allowed=True,
        target=replace(record, deployed=True, ready_to_deploy=False),
        messages=(deploy_message(record.content),),
    )


def _undeploy(record: DefinitionRecord) -> Decision:
    return Decision(
        operation=Operation.UNDEPLOY,
        allowed=True,
        target=replace(record, deployed=False, ready_to_deploy=False),
        messages=(undeploy_message(record.name),),
    )


def _delete(record: DefinitionRecord) -> Decision:
    state = state_of(record)
    if state is DefinitionState.ACTIVE:
        return _reject(Operation.DELETE, "definition is deployed and cannot be deleted")
    if state is DefinitionState.STAGED:
        return _reject(Operation.DELETE, "definition is staged for deployment and cannot be deleted")
    return Decision(operation=Operation.DELETE, allowed=True, delete=True)


def decide(
    record: DefinitionRecord,
    operation: Operation,
    *,
    name: Optional[str] = None,
    content: Optional[str] = None,
) -> Decision:
    """Decide the outcome of ``operation`` applied to ``record``.

    ``name`` and ``content`` are only read for ``Operation.EDIT``.
    """
    if operation is Operation.STAGE:
        return _stage(record)
    if operation is Operation.UNSTAGE:
        return _unstage(record)
    if operation is Operation.EDIT:
        return _edit(record, name, content)
    if operation is Operation.DEPLOY:
        return _deploy(record)
    if operation is Operation.UNDEPLOY:
        return _undeploy(record)
    if operation is Operation.DELETE:
        return _delete(record)
    raise ValueError(f"Unsupported operation: {operation!r}")
