"""Organization endpoints."""

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_current_claims
from src.api.members import add_delete_route, add_member_routes
from src.models.access import EntityKind
from src.models.auth import AccessClaims
from src.models.entity import OrganizationAttrs, OrganizationInfo
from src.services.entity_service import EntityService

router = APIRouter(prefix="/organizations", tags=["Organizations"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_organization(
    request: OrganizationAttrs,
    claims: AccessClaims = Depends(get_current_claims),
) -> OrganizationInfo:
    """Create an organization owned by the caller.

    ``name_alias`` is derived from the name when omitted.
    """
    entity_service = EntityService()
    return await entity_service.create_entity(
        EntityKind.ORGANIZATION, None, request, claims.user_id
    )


add_delete_route(router, EntityKind.ORGANIZATION)
add_member_routes(router, EntityKind.ORGANIZATION)
