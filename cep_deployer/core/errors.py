"""
Error taxonomy and shared error-handling helpers.

Store and dispatcher code raises these; the definition service catches
them at its boundary and turns them into result values.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class DefinitionError(Exception):
    code = "definition_error"

    def __init__(self, message: str, *, definition_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.definition_id = definition_id


class DefinitionNotFound(DefinitionError):
    code = "not_found"


class NameConflict(DefinitionError):
    code = "name_conflict"

    def __init__(self, name: str, *, definition_id: Optional[int] = None) -> None:
        super().__init__(f"A definition named {name!r} already exists", definition_id=definition_id)
        self.name = name


class IllegalTransition(DefinitionError):
    code = "illegal_transition"


class InvalidDefinition(DefinitionError):
    code = "invalid_definition"


class ConcurrentModification(DefinitionError):
    code = "concurrent_modification"


class DispatchUnavailable(DefinitionError):
    """Broker unreachable or publish failed."""

    code = "dispatch_unavailable"

    def __init__(self, message: str, *, queue: Optional[str] = None, definition_id: Optional[int] = None) -> None:
        super().__init__(message, definition_id=definition_id)
        self.queue = queue


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts: list[str] = []
    for key, value in extra.items():
        if value is None:
            continue
        parts.append(f"{key}={value}")
    return f" {' '.join(parts)}" if parts else ""


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context. Uses logger.exception for stack traces.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error(f"{msg}{suffix}: {exc}", exc_info=exc)
        return
    logger.exception(f"{msg}{suffix}")


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """
    Execute fn with logging on failure. Returns fallback if provided.
    """
    try:
        return fn()
    except Exception as exc:
        if logger:
            log_exception(logger, f"{name} failed", extra=context or {}, exc=exc)
        return fallback
