"""Task and subtask endpoints."""

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_current_claims
from src.api.members import add_delete_route, add_member_routes
from src.models.access import EntityKind
from src.models.auth import AccessClaims
from src.models.entity import (
    CreateSubtaskRequest,
    CreateTaskRequest,
    TaskAttrs,
    TaskInfo,
)
from src.services.entity_service import EntityService

router = APIRouter(prefix="/tasks", tags=["Tasks"])
subtasks_router = APIRouter(prefix="/subtasks", tags=["Tasks"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(
    request: CreateTaskRequest,
    claims: AccessClaims = Depends(get_current_claims),
) -> TaskInfo:
    """Create a task; requires MEMBER or above in the project."""
    entity_service = EntityService()
    attrs = TaskAttrs(**request.model_dump(exclude={"project_id"}))
    return await entity_service.create_entity(
        EntityKind.TASK, request.project_id, attrs, claims.user_id
    )


@subtasks_router.post("", status_code=status.HTTP_201_CREATED)
async def create_subtask(
    request: CreateSubtaskRequest,
    claims: AccessClaims = Depends(get_current_claims),
) -> TaskInfo:
    """Create a subtask; requires MEMBER or above in the task."""
    entity_service = EntityService()
    attrs = TaskAttrs(**request.model_dump(exclude={"task_id"}))
    return await entity_service.create_entity(
        EntityKind.SUBTASK, request.task_id, attrs, claims.user_id
    )


add_delete_route(router, EntityKind.TASK)
add_member_routes(router, EntityKind.TASK)
add_delete_route(subtasks_router, EntityKind.SUBTASK)
