"""Permission resolution over an Access Graph snapshot.

Everything here is a pure function of an ``AccessSnapshot``: no storage,
no clock. The lifecycle services load the snapshot inside their
transaction and call into this module before writing.

Resolution walks the ancestry chain from the target node towards its
organization and stops at the first grant held by the user. The nearest
grant wins even when a farther one is higher, which is how an explicit
downgrade (e.g. Guest on one task of a project the user manages) works.
"""

from typing import Iterable, Optional
from uuid import UUID

from src.errors import InvalidRole, LastOwnerConstraint, NoAccess, PermissionDenied
from src.models.access import ROLES_BY_KIND, AccessSnapshot, EntityKind, EntityRef, Role

# Minimum roles for lifecycle operations
CREATE_CHILD_ROLE = Role.MEMBER
DELETE_ENTITY_ROLE = Role.ADMINISTRATOR
MANAGE_MEMBERS_ROLE = Role.MANAGER
DELETE_FOREIGN_NOTE_ROLE = Role.ADMINISTRATOR


def resolve(snapshot: AccessSnapshot, user_id: UUID, ref: EntityRef) -> Optional[Role]:
    """Compute the effective role of ``user_id`` on ``ref``.

    Args:
        snapshot: Access Graph snapshot containing ``ref`` and its ancestors
        user_id: Principal
        ref: Target entity

    Returns:
        The role of the nearest grant on the ancestry chain, or None when
        the user has no grant anywhere on it
    """
    for node in snapshot.ancestry(ref):
        role = snapshot.grant_for(user_id, node)
        if role is not None:
            return role
    return None


def authorize(
    snapshot: AccessSnapshot, user_id: UUID, ref: EntityRef, minimum: Role
) -> Role:
    """Require the resolved role on ``ref`` to be at least ``minimum``.

    Returns:
        The resolved role

    Raises:
        NoAccess: No grant anywhere on the chain
        PermissionDenied: Resolved role is below ``minimum``
    """
    role = resolve(snapshot, user_id, ref)
    if role is None:
        raise NoAccess()
    if role < minimum:
        raise PermissionDenied()
    return role


def parse_role(kind: EntityKind, role) -> Role:
    """Coerce ``role`` to a Role valid for grants on ``kind``.

    Raises:
        InvalidRole: Unknown role name, or role not defined for the kind
    """
    try:
        parsed = role if isinstance(role, Role) else Role(str(role).lower())
    except ValueError:
        raise InvalidRole()
    if parsed not in ROLES_BY_KIND[kind]:
        raise InvalidRole(f"Role '{parsed.value}' is not defined for a {kind.value}")
    return parsed


def ensure_can_grant(
    requester_role: Role, role: Role, existing: Optional[Role]
) -> None:
    """Check a requester may grant ``role``, possibly overwriting ``existing``.

    The requester must be a member manager, hold at least the granted role,
    and rank strictly above any grant being overwritten.

    Raises:
        PermissionDenied: Any of the conditions fails
    """
    if requester_role < MANAGE_MEMBERS_ROLE:
        raise PermissionDenied()
    if requester_role < role:
        raise PermissionDenied("Cannot grant a role above your own")
    if existing is not None and not requester_role > existing:
        raise PermissionDenied("Cannot overwrite a grant at or above your own role")


def ensure_can_revoke(
    requester_id: UUID,
    requester_role: Optional[Role],
    target_id: UUID,
    target_role: Role,
) -> None:
    """Check a requester may remove the target's grant.

    Users may always drop their own grant; otherwise the requester's
    resolved role must be at least the target's role.

    Raises:
        NoAccess: Requester has no access and is not the target
        PermissionDenied: Requester ranks below the target
    """
    if requester_id == target_id:
        return
    if requester_role is None:
        raise NoAccess()
    if requester_role < MANAGE_MEMBERS_ROLE or requester_role < target_role:
        raise PermissionDenied()


def ensure_not_last_owner(target_role: Role, owner_count: int) -> None:
    """Refuse removing the only OWNER grant of an entity.

    Args:
        target_role: Role of the grant being removed
        owner_count: OWNER grants currently on the entity, target included

    Raises:
        LastOwnerConstraint: The removal would leave no owner
    """
    if target_role == Role.OWNER and owner_count <= 1:
        raise LastOwnerConstraint()


def visible(
    snapshot: AccessSnapshot, user_id: UUID, refs: Iterable[EntityRef]
) -> list[tuple[EntityRef, Role]]:
    """Return the refs the user can see, with the role resolved on each."""
    result = []
    for ref in refs:
        role = resolve(snapshot, user_id, ref)
        if role is not None:
            result.append((ref, role))
    return result
