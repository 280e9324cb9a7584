"""Member management routes shared by organizations, projects and tasks."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_current_claims
from src.models.access import EntityKind
from src.models.auth import AccessClaims
from src.models.entity import AddMemberRequest, GrantInfo, StatusResponse
from src.services.entity_service import EntityService


def add_member_routes(router: APIRouter, kind: EntityKind) -> None:
    """Register ``POST /{id}/members`` and ``DELETE /{id}/members/{user_id}``."""

    @router.post(
        "/{entity_id}/members",
        status_code=status.HTTP_201_CREATED,
        name=f"add_{kind.value}_member",
    )
    async def add_member(
        entity_id: UUID,
        request: AddMemberRequest,
        claims: AccessClaims = Depends(get_current_claims),
    ) -> GrantInfo:
        entity_service = EntityService()
        return await entity_service.add_member(
            kind, entity_id, request.user_id, request.role, claims.user_id
        )

    @router.delete("/{entity_id}/members/{user_id}", name=f"remove_{kind.value}_member")
    async def remove_member(
        entity_id: UUID,
        user_id: UUID,
        claims: AccessClaims = Depends(get_current_claims),
    ) -> StatusResponse:
        entity_service = EntityService()
        await entity_service.remove_member(kind, entity_id, user_id, claims.user_id)
        return StatusResponse(success=True)


def add_delete_route(router: APIRouter, kind: EntityKind) -> None:
    """Register ``DELETE /{id}`` deleting the node and its subtree."""

    @router.delete("/{entity_id}", name=f"delete_{kind.value}")
    async def delete_entity(
        entity_id: UUID,
        claims: AccessClaims = Depends(get_current_claims),
    ) -> StatusResponse:
        entity_service = EntityService()
        await entity_service.delete_entity(kind, entity_id, claims.user_id)
        return StatusResponse(success=True)
