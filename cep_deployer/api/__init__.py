"""
API package for the CEP definition deployer.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter

from ..models.definition import DefinitionKind
from .v1.definitions import build_definition_router
from .v1.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router)
for _kind in DefinitionKind:
    api_router.include_router(build_definition_router(_kind))
