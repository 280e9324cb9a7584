"""Access-control types: roles, entity references, grants and snapshots."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    """Capability level of a grant.

    Total order: OWNER > ADMINISTRATOR > MANAGER > MEMBER > SUPPORT > GUEST.
    Comparisons use ``level``, never the string value.
    """

    OWNER = "owner"
    ADMINISTRATOR = "administrator"
    MANAGER = "manager"
    MEMBER = "member"
    SUPPORT = "support"
    GUEST = "guest"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level >= other.level


_ROLE_LEVELS = {
    Role.GUEST: 1,
    Role.SUPPORT: 2,
    Role.MEMBER: 3,
    Role.MANAGER: 4,
    Role.ADMINISTRATOR: 5,
    Role.OWNER: 6,
}


class EntityKind(str, Enum):
    """The four hierarchy levels, root first."""

    ORGANIZATION = "organization"
    PROJECT = "project"
    TASK = "task"
    SUBTASK = "subtask"

    @property
    def parent(self) -> Optional["EntityKind"]:
        return PARENT_KIND[self]

    @property
    def table(self) -> str:
        return _TABLES[self]

    @property
    def column(self) -> str:
        """Foreign-key column naming this kind in grants/notes/child tables."""
        return f"{self.value}_id"


PARENT_KIND: dict[EntityKind, Optional[EntityKind]] = {
    EntityKind.ORGANIZATION: None,
    EntityKind.PROJECT: EntityKind.ORGANIZATION,
    EntityKind.TASK: EntityKind.PROJECT,
    EntityKind.SUBTASK: EntityKind.TASK,
}

_TABLES = {
    EntityKind.ORGANIZATION: "organizations",
    EntityKind.PROJECT: "projects",
    EntityKind.TASK: "tasks",
    EntityKind.SUBTASK: "subtasks",
}

# Administrator is scoped to organizations and projects only.
ROLES_BY_KIND: dict[EntityKind, frozenset[Role]] = {
    EntityKind.ORGANIZATION: frozenset(Role),
    EntityKind.PROJECT: frozenset(Role),
    EntityKind.TASK: frozenset(Role) - {Role.ADMINISTRATOR},
    EntityKind.SUBTASK: frozenset(Role) - {Role.ADMINISTRATOR},
}


class EntityRef(BaseModel):
    """Reference to exactly one node of the hierarchy."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: UUID

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass
class AccessSnapshot:
    """In-memory view of the Access Graph for one resolution.

    ``parents`` maps every known node to its parent (``None`` for an
    organization). ``grants`` maps (user_id, node) to the role granted there.
    """

    parents: dict[EntityRef, Optional[EntityRef]] = field(default_factory=dict)
    grants: dict[tuple[UUID, EntityRef], Role] = field(default_factory=dict)

    def add_node(self, ref: EntityRef, parent: Optional[EntityRef]) -> None:
        if (ref.kind.parent is None) != (parent is None) or (
            parent is not None and parent.kind != ref.kind.parent
        ):
            raise ValueError(f"{ref} cannot have parent {parent}")
        self.parents[ref] = parent

    def add_grant(self, user_id: UUID, ref: EntityRef, role: Role) -> None:
        self.grants[(user_id, ref)] = role

    def ancestry(self, ref: EntityRef) -> list[EntityRef]:
        """Return ``[ref, parent, grandparent, ..., organization]``.

        Raises:
            KeyError: If ``ref`` or one of its ancestors is not in the snapshot
        """
        chain = []
        current: Optional[EntityRef] = ref
        while current is not None:
            chain.append(current)
            current = self.parents[current]
        return chain

    def grant_for(self, user_id: UUID, ref: EntityRef) -> Optional[Role]:
        return self.grants.get((user_id, ref))
