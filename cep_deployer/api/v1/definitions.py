"""
HTTP endpoints for event types and event patterns.

Both kinds expose the same routes; ``build_definition_router`` is called
once per kind. Handlers only translate between HTTP and the definition
service.
"""

from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ...core.auth import get_principal
from ...models.definition import DefinitionKind
from ...schemas.definition import DefinitionIn, DefinitionOut, OperationOut
from ...services.definitions import DefinitionService, OperationResult
from ...services.lifecycle import DefinitionRecord


STATUS_BY_ERROR = {
    "not_found": 404,
    "name_conflict": 409,
    "illegal_transition": 409,
    "concurrent_modification": 409,
    "invalid_definition": 422,
    "dispatch_unavailable": 502,
}

ROUTE_PREFIXES = {
    DefinitionKind.EVENT_TYPE: "/api/v1/event-type",
    DefinitionKind.EVENT_PATTERN: "/api/v1/event-pattern",
}


def _to_out(record: DefinitionRecord) -> DefinitionOut:
    return DefinitionOut(
        id=record.id,
        kind=record.kind.value,
        name=record.name,
        content=record.content,
        ready_to_deploy=record.ready_to_deploy,
        deployed=record.deployed,
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _service_dependency(kind: DefinitionKind) -> Callable[[Request], DefinitionService]:
    def _get(request: Request) -> DefinitionService:
        return request.app.state.definition_services[kind]

    return _get


def build_definition_router(kind: DefinitionKind) -> APIRouter:
    label = kind.label.capitalize()
    router = APIRouter(prefix=ROUTE_PREFIXES[kind], tags=[f"{kind.label}s"])
    get_service = _service_dependency(kind)

    def _respond(result: OperationResult, definition_id: int, done: str) -> OperationOut:
        if not result.ok:
            status = STATUS_BY_ERROR.get(result.error or "", 400)
            raise HTTPException(
                status_code=status,
                detail=f"{label} with id: {definition_id} has not been {done}: {result.detail}",
            )
        return OperationOut(
            message=f"{label} with id: {definition_id} has been {done}",
            definition=_to_out(result.definition) if result.definition else None,
        )

    @router.get("", response_model=list[DefinitionOut])
    def list_definitions(service: DefinitionService = Depends(get_service)) -> list[DefinitionOut]:
        return [_to_out(r) for r in service.list_all()]

    @router.post("", response_model=OperationOut, status_code=201)
    def create_definition(
        payload: DefinitionIn,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        result = service.create(payload.name, payload.content, principal=principal)
        if not result.ok:
            raise HTTPException(
                status_code=STATUS_BY_ERROR.get(result.error or "", 400),
                detail=f"{label} has not been successfully created: {result.detail}",
            )
        return OperationOut(message=f"{label} created successfully.", definition=_to_out(result.definition))

    @router.get("/name", response_model=list[DefinitionOut])
    def find_by_name(
        name: str = Query(..., min_length=1),
        service: DefinitionService = Depends(get_service),
    ) -> list[DefinitionOut]:
        return [_to_out(r) for r in service.find_by_name(name)]

    @router.get("/{definition_id}", response_model=DefinitionOut)
    def get_definition(definition_id: int, service: DefinitionService = Depends(get_service)) -> DefinitionOut:
        result = service.get_by_id(definition_id)
        if not result.ok:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return _to_out(result.definition)

    @router.put("/{definition_id}", response_model=OperationOut)
    def update_definition(
        definition_id: int,
        payload: DefinitionIn,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        result = service.update(definition_id, name=payload.name, content=payload.content, principal=principal)
        return _respond(result, definition_id, "updated")

    @router.put("/ready/{definition_id}", response_model=OperationOut)
    def ready_to_deploy(
        definition_id: int,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        return _respond(service.stage(definition_id, principal=principal), definition_id, "set as ready to deploy")

    @router.put("/unready/{definition_id}", response_model=OperationOut)
    def not_ready_to_deploy(
        definition_id: int,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        return _respond(
            service.unstage(definition_id, principal=principal),
            definition_id,
            "set as not ready to deploy",
        )

    @router.put("/deploy/{definition_id}", response_model=OperationOut)
    def deploy(
        definition_id: int,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        return _respond(service.deploy(definition_id, principal=principal), definition_id, "deployed")

    @router.put("/undeploy/{definition_id}", response_model=OperationOut)
    def undeploy(
        definition_id: int,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        return _respond(service.undeploy(definition_id, principal=principal), definition_id, "undeployed")

    @router.delete("/{definition_id}", response_model=OperationOut)
    def delete_definition(
        definition_id: int,
        service: DefinitionService = Depends(get_service),
        principal: str = Depends(get_principal),
    ) -> OperationOut:
        return _respond(service.delete(definition_id, principal=principal), definition_id, "deleted")

    return router
