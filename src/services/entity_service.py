"""Entity lifecycle: create/delete nodes and manage member grants.

Each operation is one transaction: the Access Graph snapshot used for the
authorization decision is read on the same connection that performs the
write.
"""

import secrets
import string
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import asyncpg
import pydantic
import structlog

from src.database import run_in_transaction
from src.errors import Conflict, NoAccess, NotFound, ValidationError
from src.models.access import EntityKind, EntityRef, Role
from src.models.entity import (
    GrantInfo,
    OrganizationAttrs,
    OrganizationInfo,
    ProjectAttrs,
    ProjectInfo,
    TaskAttrs,
    TaskInfo,
)
from src.services import access_graph
from src.services.permission_resolver import (
    CREATE_CHILD_ROLE,
    DELETE_ENTITY_ROLE,
    MANAGE_MEMBERS_ROLE,
    authorize,
    ensure_can_grant,
    ensure_can_revoke,
    ensure_not_last_owner,
    parse_role,
    resolve,
    visible,
)

logger = structlog.get_logger(__name__)

EntityInfo = Union[OrganizationInfo, ProjectInfo, TaskInfo]

_ATTRS_MODELS = {
    EntityKind.ORGANIZATION: OrganizationAttrs,
    EntityKind.PROJECT: ProjectAttrs,
    EntityKind.TASK: TaskAttrs,
    EntityKind.SUBTASK: TaskAttrs,
}

ALIAS_ATTEMPTS = 5
ALIAS_SUFFIX_LENGTH = 4


def derive_name_alias(name: str) -> str:
    """Lowercase alphanumerics of ``name``, e.g. 'Tech Corp 2' -> 'techcorp2'."""
    alias = "".join(c for c in name if c.isascii() and c.isalnum()).lower()
    return alias or "org"


def _parent_missing(e: asyncpg.exceptions.ForeignKeyViolationError, kind: EntityKind) -> bool:
    """True when the violated key is the one naming the parent node."""
    constraint = getattr(e, "constraint_name", None) or ""
    return constraint == f"{kind.table}_{kind.parent.column}_fkey"


def _coerce_attrs(kind: EntityKind, attrs: Any) -> pydantic.BaseModel:
    model = _ATTRS_MODELS[kind]
    if isinstance(attrs, model):
        return attrs
    if isinstance(attrs, pydantic.BaseModel):
        attrs = attrs.model_dump()
    try:
        return model.model_validate(attrs)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ())) or "attrs"
        raise ValidationError(f"Field '{field}': {first.get('msg', 'invalid')}")


class EntityService:
    """Creates and deletes hierarchy nodes and manages their grants."""

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def _insert_organization(
        self, conn: asyncpg.Connection, attrs: OrganizationAttrs
    ) -> OrganizationInfo:
        base_alias = attrs.name_alias or derive_name_alias(attrs.name)
        attempts = 1 if attrs.name_alias else ALIAS_ATTEMPTS

        for attempt in range(attempts):
            alias = base_alias
            if attempt > 0:
                alias += "".join(
                    secrets.choice(string.ascii_lowercase)
                    for _ in range(ALIAS_SUFFIX_LENGTH)
                )
            row = await conn.fetchrow(
                """
                INSERT INTO organizations (id, name, name_alias, description, contact_info)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (name_alias) DO NOTHING
                RETURNING id, name, name_alias, description, contact_info
                """,
                uuid4(),
                attrs.name,
                alias,
                attrs.description,
                attrs.contact_info,
            )
            if row is not None:
                return OrganizationInfo(**dict(row))

        raise Conflict("Organization alias is already taken")

    async def _insert_project(
        self, conn: asyncpg.Connection, organization_id: UUID, attrs: ProjectAttrs
    ) -> ProjectInfo:
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO projects (id, organization_id, title, description, decoration_color)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, organization_id, title, description, decoration_color
                """,
                uuid4(),
                organization_id,
                attrs.title,
                attrs.description,
                attrs.decoration_color,
            )
        except asyncpg.exceptions.ForeignKeyViolationError:
            # Organization deleted after the authorization read
            raise NotFound("Organization not found")
        return ProjectInfo(**dict(row))

    async def _insert_task(
        self, conn: asyncpg.Connection, kind: EntityKind, parent_id: UUID, attrs: TaskAttrs
    ) -> TaskInfo:
        try:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {kind.table}
                    (id, {kind.parent.column}, title, description, status,
                     priority, assigned_to, due_date)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING id, {kind.parent.column} AS parent_id, title, description,
                          status, priority, assigned_to, due_date
                """,
                uuid4(),
                parent_id,
                attrs.title,
                attrs.description,
                attrs.status.value,
                attrs.priority,
                attrs.assigned_to,
                attrs.due_date,
            )
        except asyncpg.exceptions.ForeignKeyViolationError as e:
            if _parent_missing(e, kind):
                raise NotFound(f"{kind.parent.value.capitalize()} not found")
            raise ValidationError("Assigned user does not exist")
        return TaskInfo(**dict(row))

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def create_entity(
        self,
        kind: EntityKind,
        parent_id: Optional[UUID],
        attrs: Any,
        creator_id: UUID,
    ) -> EntityInfo:
        """Create a node and grant its creator OWNER on it, atomically.

        Args:
            kind: Level of the new node
            parent_id: Parent node id; must be None for an organization
            attrs: Attributes model (or dict) for the kind
            creator_id: Authenticated user

        Returns:
            The created entity with ``role`` set to OWNER

        Raises:
            ValidationError: Bad attributes or parent/kind mismatch
            NotFound: Parent does not exist
            PermissionDenied: Creator lacks MEMBER access at the parent
        """
        kind = EntityKind(kind)
        attrs = _coerce_attrs(kind, attrs)

        if kind.parent is None and parent_id is not None:
            raise ValidationError("An organization has no parent")
        if kind.parent is not None and parent_id is None:
            raise ValidationError(f"A {kind.value} requires a parent {kind.parent.value}")

        async def work(conn: asyncpg.Connection) -> EntityInfo:
            if kind.parent is not None:
                parent = EntityRef(kind=kind.parent, id=parent_id)
                snapshot = await access_graph.load_snapshot(conn, [creator_id], parent)
                authorize(snapshot, creator_id, parent, CREATE_CHILD_ROLE)

            if kind == EntityKind.ORGANIZATION:
                entity = await self._insert_organization(conn, attrs)
            elif kind == EntityKind.PROJECT:
                entity = await self._insert_project(conn, parent_id, attrs)
            else:
                entity = await self._insert_task(conn, kind, parent_id, attrs)

            await access_graph.upsert_grant(
                conn, creator_id, EntityRef(kind=kind, id=entity.id), Role.OWNER
            )
            return entity

        entity = await run_in_transaction(work)
        entity.role = Role.OWNER

        logger.info(
            "entity_created",
            kind=kind.value,
            entity_id=str(entity.id),
            parent_id=str(parent_id) if parent_id else None,
            creator_id=str(creator_id),
        )
        return entity

    async def delete_entity(
        self, kind: EntityKind, entity_id: UUID, requester_id: UUID
    ) -> None:
        """Delete a node together with its descendants, grants and notes.

        Raises:
            NotFound: The node does not exist
            PermissionDenied: Requester resolves below ADMINISTRATOR
        """
        ref = EntityRef(kind=kind, id=entity_id)

        async def work(conn: asyncpg.Connection) -> None:
            snapshot = await access_graph.load_snapshot(conn, [requester_id], ref)
            authorize(snapshot, requester_id, ref, DELETE_ENTITY_ROLE)
            # Descendants, grants and notes go through ON DELETE CASCADE.
            result = await conn.execute(
                f"DELETE FROM {ref.kind.table} WHERE id = $1", ref.id
            )
            if result != "DELETE 1":
                raise NotFound(f"{ref.kind.value.capitalize()} not found")

        await run_in_transaction(work)
        logger.info(
            "entity_deleted",
            kind=ref.kind.value,
            entity_id=str(entity_id),
            requester_id=str(requester_id),
        )

    async def add_member(
        self,
        kind: EntityKind,
        entity_id: UUID,
        target_user_id: UUID,
        role: Union[Role, str],
        requester_id: UUID,
    ) -> GrantInfo:
        """Grant ``role`` on a node to ``target_user_id`` (upsert).

        The requester needs at least MANAGER, at least ``role``, and a role
        strictly above any grant of the target being overwritten.

        Raises:
            InvalidRole: Role unknown or not defined for the kind
            NotFound: Node or target user does not exist
            PermissionDenied: Any authorization rule fails
        """
        ref = EntityRef(kind=kind, id=entity_id)
        role = parse_role(ref.kind, role)

        async def work(conn: asyncpg.Connection) -> GrantInfo:
            snapshot = await access_graph.load_snapshot(conn, [requester_id], ref)
            requester_role = authorize(snapshot, requester_id, ref, MANAGE_MEMBERS_ROLE)

            exists = await conn.fetchval(
                "SELECT 1 FROM users WHERE id = $1 AND is_active", target_user_id
            )
            if not exists:
                raise NotFound("User not found")

            existing = await access_graph.fetch_grant_for_update(conn, target_user_id, ref)
            ensure_can_grant(requester_role, role, existing)
            await access_graph.upsert_grant(conn, target_user_id, ref, role)
            return GrantInfo(user_id=target_user_id, entity=ref, role=role)

        grant = await run_in_transaction(work)
        logger.info(
            "member_added",
            entity=str(ref),
            user_id=str(target_user_id),
            role=role.value,
            requester_id=str(requester_id),
        )
        return grant

    async def remove_member(
        self,
        kind: EntityKind,
        entity_id: UUID,
        target_user_id: UUID,
        requester_id: UUID,
    ) -> None:
        """Remove the grant of ``target_user_id`` on a node.

        Owner grants on the node are locked first so that concurrent
        removals serialize and cannot both pass the last-owner check.

        Raises:
            NotFound: Node does not exist, or target has no grant on it
            NoAccess / PermissionDenied: Requester may not remove the target
            LastOwnerConstraint: Target holds the only OWNER grant
        """
        ref = EntityRef(kind=kind, id=entity_id)

        async def work(conn: asyncpg.Connection) -> None:
            owner_count = await access_graph.lock_owner_grants(conn, ref)
            snapshot = await access_graph.load_snapshot(conn, [requester_id], ref)
            requester_role = resolve(snapshot, requester_id, ref)
            if requester_role is None and requester_id != target_user_id:
                raise NoAccess()

            target_role = await access_graph.fetch_grant_for_update(conn, target_user_id, ref)
            if target_role is None:
                raise NotFound("User has no grant on this entity")

            ensure_can_revoke(requester_id, requester_role, target_user_id, target_role)
            ensure_not_last_owner(target_role, owner_count)
            await access_graph.delete_grant(conn, target_user_id, ref)

        await run_in_transaction(work)
        logger.info(
            "member_removed",
            entity=str(ref),
            user_id=str(target_user_id),
            requester_id=str(requester_id),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_project_tasks(self, project_id: UUID, requester_id: UUID) -> list[TaskInfo]:
        """Tasks of a project the requester can see, each with its resolved role.

        A grant on the project or organization shows every task; a grant on
        a single task shows only that task.

        Raises:
            NotFound: The project does not exist
            NoAccess: The requester sees neither the project nor any of its tasks
        """

        async def work(conn: asyncpg.Connection) -> list[TaskInfo]:
            snapshot, rows = await access_graph.load_project_tasks(conn, requester_id, project_id)
            project = EntityRef(kind=EntityKind.PROJECT, id=project_id)
            by_id = {row["id"]: row for row in rows}
            refs = [EntityRef(kind=EntityKind.TASK, id=row["id"]) for row in rows]

            tasks = [
                TaskInfo(**dict(by_id[ref.id]), role=role)
                for ref, role in visible(snapshot, requester_id, refs)
            ]
            if not tasks and resolve(snapshot, requester_id, project) is None:
                raise NoAccess()
            return tasks

        return await run_in_transaction(work, readonly=True)
