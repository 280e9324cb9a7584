"""Access Graph read model and grant writes.

All functions take the connection of the caller's transaction so that the
authorization reads and the mutation they guard are one unit. Grant rows
read for authorization are locked ``FOR SHARE``: a concurrent revoke waits
for the authorizing transaction to finish.
"""

from typing import Iterable, Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.errors import NotFound
from src.models.access import AccessSnapshot, EntityKind, EntityRef, Role

logger = structlog.get_logger(__name__)

# One query per kind returning the node and every ancestor id.
_ANCESTRY_QUERIES = {
    EntityKind.ORGANIZATION: """
        SELECT o.id AS organization_id
        FROM organizations o
        WHERE o.id = $1
    """,
    EntityKind.PROJECT: """
        SELECT p.id AS project_id, p.organization_id
        FROM projects p
        WHERE p.id = $1
    """,
    EntityKind.TASK: """
        SELECT t.id AS task_id, t.project_id, p.organization_id
        FROM tasks t
        JOIN projects p ON p.id = t.project_id
        WHERE t.id = $1
    """,
    EntityKind.SUBTASK: """
        SELECT s.id AS subtask_id, s.task_id, t.project_id, p.organization_id
        FROM subtasks s
        JOIN tasks t ON t.id = s.task_id
        JOIN projects p ON p.id = t.project_id
        WHERE s.id = $1
    """,
}


async def load_ancestry(conn: asyncpg.Connection, ref: EntityRef) -> list[EntityRef]:
    """Return ``[ref, parent, ..., organization]`` as stored.

    Raises:
        NotFound: The entity does not exist
    """
    row = await conn.fetchrow(_ANCESTRY_QUERIES[ref.kind], ref.id)
    if row is None:
        raise NotFound(f"{ref.kind.value.capitalize()} not found")

    chain = []
    kind: Optional[EntityKind] = ref.kind
    while kind is not None:
        chain.append(EntityRef(kind=kind, id=row[kind.column]))
        kind = kind.parent
    return chain


async def load_snapshot(
    conn: asyncpg.Connection,
    user_ids: Iterable[UUID],
    ref: EntityRef,
    lock: bool = True,
) -> AccessSnapshot:
    """Load the ancestry of ``ref`` and the users' grants along it.

    Args:
        conn: Connection of the current transaction
        user_ids: Principals whose grants are needed (requester, target...)
        ref: Target entity
        lock: Share-lock the grant rows; must be False in read-only transactions

    Returns:
        Snapshot sufficient to resolve any of ``user_ids`` on ``ref``

    Raises:
        NotFound: The entity does not exist
    """
    chain = await load_ancestry(conn, ref)

    snapshot = AccessSnapshot()
    for node, parent in zip(chain, chain[1:] + [None]):
        snapshot.add_node(node, parent)

    lock_clause = "FOR SHARE" if lock else ""
    rows = await conn.fetch(
        f"""
        SELECT user_id, entity_kind, entity_id, role
        FROM grants
        WHERE user_id = ANY($1::uuid[])
          AND (entity_kind, entity_id) IN (
              SELECT * FROM unnest($2::text[], $3::uuid[])
          )
        {lock_clause}
        """,
        list(set(user_ids)),
        [node.kind.value for node in chain],
        [node.id for node in chain],
    )
    for row in rows:
        snapshot.add_grant(
            row["user_id"],
            EntityRef(kind=EntityKind(row["entity_kind"]), id=row["entity_id"]),
            Role(row["role"]),
        )
    return snapshot


async def fetch_grant_for_update(
    conn: asyncpg.Connection, user_id: UUID, ref: EntityRef
) -> Optional[Role]:
    """Return the role granted to ``user_id`` exactly at ``ref``, locking the row."""
    role = await conn.fetchval(
        """
        SELECT role FROM grants
        WHERE user_id = $1 AND entity_kind = $2 AND entity_id = $3
        FOR UPDATE
        """,
        user_id,
        ref.kind.value,
        ref.id,
    )
    return Role(role) if role is not None else None


async def lock_owner_grants(conn: asyncpg.Connection, ref: EntityRef) -> int:
    """Lock every OWNER grant on ``ref`` and return how many there are.

    Two concurrent removals of different owners serialize on these locks,
    so the second one sees the first one's effect. Rows are locked in id
    order and before any other grant lock of the transaction.
    """
    rows = await conn.fetch(
        """
        SELECT id FROM grants
        WHERE entity_kind = $1 AND entity_id = $2 AND role = $3
        ORDER BY id
        FOR UPDATE
        """,
        ref.kind.value,
        ref.id,
        Role.OWNER.value,
    )
    return len(rows)


async def upsert_grant(
    conn: asyncpg.Connection, user_id: UUID, ref: EntityRef, role: Role
) -> None:
    """Create or overwrite the grant of ``user_id`` at ``ref``."""
    await conn.execute(
        f"""
        INSERT INTO grants (id, user_id, role, {ref.kind.column})
        VALUES ($1, $2, $3, $4)
        ON CONFLICT ON CONSTRAINT uq_grants_user_entity
        DO UPDATE SET role = EXCLUDED.role, updated_at = now()
        """,
        uuid4(),
        user_id,
        role.value,
        ref.id,
    )


async def delete_grant(conn: asyncpg.Connection, user_id: UUID, ref: EntityRef) -> bool:
    """Delete the grant of ``user_id`` at ``ref``; True if one existed."""
    result = await conn.execute(
        """
        DELETE FROM grants
        WHERE user_id = $1 AND entity_kind = $2 AND entity_id = $3
        """,
        user_id,
        ref.kind.value,
        ref.id,
    )
    return result == "DELETE 1"


async def load_organization_snapshot(
    conn: asyncpg.Connection, user_id: UUID, organization_id: UUID
) -> tuple[AccessSnapshot, list[asyncpg.Record]]:
    """Snapshot of an organization and its projects for one user.

    Returns:
        (snapshot, project rows ordered by creation)

    Raises:
        NotFound: The organization does not exist
    """
    org_ref = EntityRef(kind=EntityKind.ORGANIZATION, id=organization_id)
    await load_ancestry(conn, org_ref)

    snapshot = AccessSnapshot()
    snapshot.add_node(org_ref, None)

    projects = await conn.fetch(
        """
        SELECT id, organization_id, title, description, decoration_color
        FROM projects
        WHERE organization_id = $1
        ORDER BY created_at ASC
        """,
        organization_id,
    )
    for project in projects:
        snapshot.add_node(EntityRef(kind=EntityKind.PROJECT, id=project["id"]), org_ref)

    rows = await conn.fetch(
        """
        SELECT entity_kind, entity_id, role
        FROM grants
        WHERE user_id = $1
          AND (
              (entity_kind = 'organization' AND entity_id = $2)
              OR (entity_kind = 'project' AND entity_id = ANY($3::uuid[]))
          )
        """,
        user_id,
        organization_id,
        [p["id"] for p in projects],
    )
    for row in rows:
        snapshot.add_grant(
            user_id,
            EntityRef(kind=EntityKind(row["entity_kind"]), id=row["entity_id"]),
            Role(row["role"]),
        )
    return snapshot, projects


async def load_project_tasks(
    conn: asyncpg.Connection, user_id: UUID, project_id: UUID
) -> tuple[AccessSnapshot, list[asyncpg.Record]]:
    """Snapshot of a project and its tasks for one user, without locks.

    Returns:
        (snapshot, task rows ordered by creation)

    Raises:
        NotFound: The project does not exist
    """
    project_ref = EntityRef(kind=EntityKind.PROJECT, id=project_id)
    snapshot = await load_snapshot(conn, [user_id], project_ref, lock=False)

    tasks = await conn.fetch(
        """
        SELECT id, project_id AS parent_id, title, description, status,
               priority, assigned_to, due_date
        FROM tasks
        WHERE project_id = $1
        ORDER BY created_at ASC
        """,
        project_id,
    )
    for task in tasks:
        snapshot.add_node(EntityRef(kind=EntityKind.TASK, id=task["id"]), project_ref)

    rows = await conn.fetch(
        """
        SELECT entity_id, role
        FROM grants
        WHERE user_id = $1 AND entity_kind = 'task' AND entity_id = ANY($2::uuid[])
        """,
        user_id,
        [t["id"] for t in tasks],
    )
    for row in rows:
        snapshot.add_grant(
            user_id, EntityRef(kind=EntityKind.TASK, id=row["entity_id"]), Role(row["role"])
        )
    return snapshot, tasks


async def default_organization_id(conn: asyncpg.Connection, user_id: UUID) -> Optional[UUID]:
    """Oldest organization in which the user holds an organization or project grant.

    Task and subtask grants do not count: ``load_organization_snapshot``
    resolves only the organization and its projects.
    """
    return await conn.fetchval(
        """
        SELECT o.id
        FROM organizations o
        WHERE EXISTS (
            SELECT 1 FROM grants g
            LEFT JOIN projects p ON p.id = g.project_id
            WHERE g.user_id = $1
              AND g.entity_kind IN ('organization', 'project')
              AND COALESCE(g.organization_id, p.organization_id) = o.id
        )
        ORDER BY o.created_at ASC
        LIMIT 1
        """,
        user_id,
    )
