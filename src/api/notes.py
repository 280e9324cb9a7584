"""Note endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from src.api.dependencies import get_current_claims
from src.models.auth import AccessClaims
from src.models.entity import CreateNoteRequest, NoteAttrs, NoteInfo, StatusResponse
from src.services.note_service import NoteService

router = APIRouter(prefix="/notes", tags=["Notes"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_note(
    request: CreateNoteRequest,
    claims: AccessClaims = Depends(get_current_claims),
) -> NoteInfo:
    """Create a personal note, or one attached to an entity (MEMBER or above)."""
    note_service = NoteService()
    attrs = NoteAttrs(**request.model_dump(exclude={"entity"}))
    return await note_service.create_note(claims.user_id, request.entity, attrs)


@router.get("/{note_id}")
async def get_note(
    note_id: UUID,
    claims: AccessClaims = Depends(get_current_claims),
) -> NoteInfo:
    note_service = NoteService()
    return await note_service.get_note(note_id, claims.user_id)


@router.delete("/{note_id}")
async def delete_note(
    note_id: UUID,
    claims: AccessClaims = Depends(get_current_claims),
) -> StatusResponse:
    """Delete a note as its author or as ADMINISTRATOR of its entity."""
    note_service = NoteService()
    await note_service.delete_note(note_id, claims.user_id)
    return StatusResponse(success=True)
