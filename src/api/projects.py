"""Project endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_current_claims
from src.api.members import add_delete_route, add_member_routes
from src.models.access import EntityKind
from src.models.auth import AccessClaims
from src.models.entity import CreateProjectRequest, ProjectAttrs, ProjectInfo, TaskInfo
from src.services.entity_service import EntityService

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    claims: AccessClaims = Depends(get_current_claims),
) -> ProjectInfo:
    """Create a project; requires MEMBER or above in the organization."""
    entity_service = EntityService()
    attrs = ProjectAttrs(**request.model_dump(exclude={"organization_id"}))
    return await entity_service.create_entity(
        EntityKind.PROJECT, request.organization_id, attrs, claims.user_id
    )


@router.get("/{project_id}/tasks")
async def list_project_tasks(
    project_id: UUID,
    claims: AccessClaims = Depends(get_current_claims),
) -> list[TaskInfo]:
    """Tasks of the project visible to the caller."""
    entity_service = EntityService()
    return await entity_service.list_project_tasks(project_id, claims.user_id)


add_delete_route(router, EntityKind.PROJECT)
add_member_routes(router, EntityKind.PROJECT)
