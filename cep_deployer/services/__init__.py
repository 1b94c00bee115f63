"""
Service layer for the CEP definition deployer.

This package contains the lifecycle state machine, the definition store,
the broker dispatchers and the service that ties them together.
"""

from .definitions import DefinitionService, OperationResult, build_services
from .dispatcher import MessageDispatcher, build_dispatcher
from .store import DefinitionStore

__all__ = [
    "DefinitionService",
    "DefinitionStore",
    "MessageDispatcher",
    "OperationResult",
    "build_dispatcher",
    "build_services",
]
