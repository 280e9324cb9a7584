"""User management service."""

from typing import Optional
from uuid import UUID, uuid4

import asyncpg
import structlog

from src.database import run_in_transaction
from src.errors import Conflict, NoAccess, NotFound, PermissionDenied
from src.models.access import EntityKind, EntityRef, Role
from src.models.auth import (
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UpdateUserRequest,
    UserDataResponse,
)
from src.models.entity import OrganizationInfo, ProjectInfo
from src.models.user import User
from src.services import access_graph
from src.services.auth_service import AuthService
from src.services.credential_service import CredentialService
from src.services.permission_resolver import resolve, visible

logger = structlog.get_logger(__name__)

# Minimum organization role allowed to edit another member's account
MANAGE_USERS_ROLE = Role.ADMINISTRATOR

_USER_COLUMNS = "id, login, user_name, email, is_active, created_at, updated_at"


def _user_from_row(row: asyncpg.Record) -> User:
    return User(**dict(row))


def _conflict_message(e: asyncpg.exceptions.UniqueViolationError) -> str:
    constraint = getattr(e, "constraint_name", None) or ""
    if "email" in constraint:
        return "Email is already registered"
    if "login" in constraint:
        return "Login is already taken"
    return "User already exists"


class UserService:
    """Registration, login, profile reads and updates."""

    def __init__(self):
        self.auth_service = AuthService()
        self.credential_service = CredentialService()

    async def _fetch_user(self, conn: asyncpg.Connection, user_id: UUID) -> User:
        row = await conn.fetchrow(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id
        )
        if row is None:
            raise NotFound("User not found")
        return _user_from_row(row)

    async def register_user(self, request: RegisterRequest) -> RegisterResponse:
        """Create a user with a credential and an initial session.

        User row, credential and session are written in one transaction.

        Raises:
            Conflict: Login or email already registered
        """
        user_id = uuid4()

        async def work(conn: asyncpg.Connection):
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (id, login, user_name, email)
                    VALUES ($1, $2, $3, $4)
                    RETURNING {_USER_COLUMNS}
                    """,
                    user_id,
                    request.login,
                    request.user_name,
                    request.email,
                )
            except asyncpg.exceptions.UniqueViolationError as e:
                raise Conflict(_conflict_message(e))

            await self.credential_service.set_credential(conn, user_id, request.password)
            tokens = await self.auth_service.issue(conn, user_id)
            return _user_from_row(row), tokens

        user, tokens = await run_in_transaction(work)
        logger.info("user_registered", user_id=str(user.id))

        return RegisterResponse(
            user_id=user.id,
            email=user.email,
            user_name=user.user_name,
            login=user.login,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        )

    async def _user_data(
        self,
        conn: asyncpg.Connection,
        user: User,
        organization_id: Optional[UUID],
    ) -> UserDataResponse:
        explicit = organization_id is not None
        if organization_id is None:
            organization_id = await access_graph.default_organization_id(conn, user.id)

        data = UserDataResponse(
            user_id=user.id,
            email=user.email,
            user_name=user.user_name,
            login=user.login,
        )
        if organization_id is None:
            return data

        snapshot, projects = await access_graph.load_organization_snapshot(
            conn, user.id, organization_id
        )
        org_ref = EntityRef(kind=EntityKind.ORGANIZATION, id=organization_id)
        org_role = resolve(snapshot, user.id, org_ref)

        by_id = {p["id"]: p for p in projects}
        seen = visible(
            snapshot,
            user.id,
            [EntityRef(kind=EntityKind.PROJECT, id=p["id"]) for p in projects],
        )
        if org_role is None and not seen:
            if explicit:
                raise NoAccess()
            return data

        org_row = await conn.fetchrow(
            """
            SELECT id, name, name_alias, description, contact_info
            FROM organizations WHERE id = $1
            """,
            organization_id,
        )
        data.organization = OrganizationInfo(**dict(org_row), role=org_role)
        data.projects = [
            ProjectInfo(**dict(by_id[ref.id]), role=role) for ref, role in seen
        ]
        return data

    async def authenticate(
        self, login: str, password: str, organization_id: Optional[UUID] = None
    ) -> LoginResponse:
        """Verify a password login, open a session and return user data.

        Raises:
            InvalidCredential: Unknown login, wrong password or inactive user
        """

        async def work(conn: asyncpg.Connection):
            user_id = await self.credential_service.verify_login(conn, login, password)
            user = await self._fetch_user(conn, user_id)
            tokens = await self.auth_service.issue(conn, user_id)
            data = await self._user_data(conn, user, organization_id)
            return data, tokens

        data, tokens = await run_in_transaction(work)
        logger.info("user_authenticated", user_id=str(data.user_id))

        return LoginResponse(
            **data.model_dump(),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        )

    async def get_user_data(
        self, user_id: UUID, organization_id: Optional[UUID] = None
    ) -> UserDataResponse:
        """User details plus one organization and the projects visible in it.

        Without ``organization_id`` the oldest organization in which the
        user holds any grant is used.

        Raises:
            NotFound: User or requested organization does not exist
            NoAccess: User has no access anywhere in the requested organization
        """

        async def work(conn: asyncpg.Connection) -> UserDataResponse:
            user = await self._fetch_user(conn, user_id)
            return await self._user_data(conn, user, organization_id)

        return await run_in_transaction(work, readonly=True)

    async def _ensure_can_manage(
        self, conn: asyncpg.Connection, requester_id: UUID, target_id: UUID
    ) -> None:
        """Requester must be ADMINISTRATOR+ of an organization the target is a member of."""
        rows = await conn.fetch(
            """
            SELECT r.role
            FROM grants r
            JOIN grants t ON t.organization_id = r.organization_id
            WHERE r.user_id = $1 AND t.user_id = $2
            """,
            requester_id,
            target_id,
        )
        if not rows:
            raise NoAccess()
        if not any(Role(row["role"]) >= MANAGE_USERS_ROLE for row in rows):
            raise PermissionDenied()

    async def update_user(
        self,
        target_id: UUID,
        requester_id: UUID,
        request: UpdateUserRequest,
        current_session_id: Optional[UUID] = None,
    ) -> User:
        """Update profile fields that are set in ``request``.

        A new password replaces the credential and revokes every other
        session of the user; deactivation revokes all of them.

        Raises:
            NotFound: Target user does not exist
            NoAccess / PermissionDenied: Requester may not edit the target
            Conflict: Email already registered
        """
        fields = {
            name: getattr(request, name)
            for name in ("user_name", "email", "is_active")
            if getattr(request, name) is not None
        }

        async def work(conn: asyncpg.Connection) -> User:
            await self._fetch_user(conn, target_id)
            if requester_id != target_id:
                await self._ensure_can_manage(conn, requester_id, target_id)

            # Build SET clause dynamically for provided fields
            set_clauses = [f"{name} = ${i}" for i, name in enumerate(fields, start=2)]
            set_clauses.append("updated_at = now()")
            assignments = ", ".join(set_clauses)
            try:
                row = await conn.fetchrow(
                    f"""
                    UPDATE users
                    SET {assignments}
                    WHERE id = $1
                    RETURNING {_USER_COLUMNS}
                    """,
                    target_id,
                    *fields.values(),
                )
            except asyncpg.exceptions.UniqueViolationError as e:
                raise Conflict(_conflict_message(e))

            if request.password is not None:
                await self.credential_service.set_credential(conn, target_id, request.password)
                keep = current_session_id if requester_id == target_id else None
                await self.auth_service.revoke_all_for_user(
                    conn, target_id, "credential_changed", keep_session_id=keep
                )
            if request.is_active is False:
                await self.auth_service.revoke_all_for_user(conn, target_id, "user_deactivated")
            return _user_from_row(row)

        user = await run_in_transaction(work)
        logger.info(
            "user_updated",
            user_id=str(target_id),
            requester_id=str(requester_id),
            fields_updated=list(fields) + (["credential"] if request.password else []),
        )
        return user
