"""Notes: personal or attached to one entity, scoped by the same resolver."""

from typing import Any, Optional
from uuid import UUID, uuid4

import asyncpg
import pydantic
import structlog

from src.database import run_in_transaction
from src.errors import NoAccess, NotFound, ValidationError
from src.models.access import EntityKind, EntityRef
from src.models.entity import NoteAttrs, NoteInfo
from src.services import access_graph
from src.services.permission_resolver import (
    CREATE_CHILD_ROLE,
    DELETE_FOREIGN_NOTE_ROLE,
    authorize,
    resolve,
)

logger = structlog.get_logger(__name__)


def _note_from_row(row: asyncpg.Record) -> NoteInfo:
    entity = None
    if row["entity_kind"] is not None:
        entity = EntityRef(kind=EntityKind(row["entity_kind"]), id=row["entity_id"])
    return NoteInfo(
        id=row["id"],
        author_id=row["author_id"],
        entity=entity,
        content=row["content"],
        tags=row["tags"],
        decoration_color=row["decoration_color"],
        created_at=row["created_at"],
    )


class NoteService:
    """Create, read and delete notes."""

    async def create_note(
        self, author_id: UUID, entity: Optional[EntityRef], attrs: Any
    ) -> NoteInfo:
        """Create a note, attached to ``entity`` or personal when None.

        Attaching requires at least MEMBER on the entity.

        Raises:
            ValidationError: Bad attributes
            NotFound: Entity does not exist
            PermissionDenied: Author lacks access to the entity
        """
        try:
            attrs = attrs if isinstance(attrs, NoteAttrs) else NoteAttrs.model_validate(attrs)
        except pydantic.ValidationError as e:
            raise ValidationError(e.errors()[0].get("msg", "Invalid note"))

        async def work(conn: asyncpg.Connection) -> NoteInfo:
            if entity is not None:
                snapshot = await access_graph.load_snapshot(conn, [author_id], entity)
                authorize(snapshot, author_id, entity, CREATE_CHILD_ROLE)

            columns = ["id", "author_id", "content", "tags", "decoration_color"]
            values = [uuid4(), author_id, attrs.content, attrs.tags, attrs.decoration_color]
            if entity is not None:
                columns.append(entity.kind.column)
                values.append(entity.id)
            column_list = ", ".join(columns)
            placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))

            row = await conn.fetchrow(
                f"""
                INSERT INTO notes ({column_list})
                VALUES ({placeholders})
                RETURNING id, author_id, entity_kind, entity_id, content, tags,
                          decoration_color, created_at
                """,
                *values,
            )
            return _note_from_row(row)

        note = await run_in_transaction(work)
        logger.info(
            "note_created",
            note_id=str(note.id),
            author_id=str(author_id),
            entity=str(entity) if entity else None,
        )
        return note

    async def _fetch(self, conn: asyncpg.Connection, note_id: UUID, lock: bool = False) -> NoteInfo:
        lock_clause = "FOR UPDATE" if lock else ""
        row = await conn.fetchrow(
            f"""
            SELECT id, author_id, entity_kind, entity_id, content, tags,
                   decoration_color, created_at
            FROM notes
            WHERE id = $1
            {lock_clause}
            """,
            note_id,
        )
        if row is None:
            raise NotFound("Note not found")
        return _note_from_row(row)

    async def get_note(self, note_id: UUID, requester_id: UUID) -> NoteInfo:
        """Return a note visible to the requester.

        Personal notes are visible to their author only; attached notes to
        anyone with a resolved role on the entity.

        Raises:
            NotFound: No such note, or someone else's personal note
            NoAccess: No access to the attached entity
        """

        async def work(conn: asyncpg.Connection) -> NoteInfo:
            note = await self._fetch(conn, note_id)
            if note.author_id == requester_id:
                return note
            if note.entity is None:
                raise NotFound("Note not found")
            snapshot = await access_graph.load_snapshot(
                conn, [requester_id], note.entity, lock=False
            )
            if resolve(snapshot, requester_id, note.entity) is None:
                raise NoAccess()
            return note

        return await run_in_transaction(work, readonly=True)

    async def delete_note(self, note_id: UUID, requester_id: UUID) -> None:
        """Delete a note as its author or as ADMINISTRATOR+ of its entity.

        Raises:
            NotFound: No such note, or someone else's personal note
            NoAccess / PermissionDenied: Requester may not delete it
        """

        async def work(conn: asyncpg.Connection) -> None:
            note = await self._fetch(conn, note_id, lock=True)
            if note.author_id != requester_id:
                if note.entity is None:
                    raise NotFound("Note not found")
                snapshot = await access_graph.load_snapshot(conn, [requester_id], note.entity)
                authorize(snapshot, requester_id, note.entity, DELETE_FOREIGN_NOTE_ROLE)
            await conn.execute("DELETE FROM notes WHERE id = $1", note_id)

        await run_in_transaction(work)
        logger.info("note_deleted", note_id=str(note_id), requester_id=str(requester_id))
