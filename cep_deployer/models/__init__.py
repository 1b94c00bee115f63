"""
SQLAlchemy model base class for the CEP definition deployer.

All models should inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .definition import Definition, DefinitionKind  # noqa: E402,F401
from .dispatch_outbox import DispatchOutbox  # noqa: E402,F401

__all__ = [
    "Base",
    "Definition",
    "DefinitionKind",
    "DispatchOutbox",
]
