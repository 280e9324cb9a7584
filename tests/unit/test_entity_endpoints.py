"""Unit tests for organization, project, task, subtask and note endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from src.errors import (
    InvalidRole,
    LastOwnerConstraint,
    NoAccess,
    NotFound,
    PermissionDenied,
)
from src.models.access import EntityKind, EntityRef, Role
from src.models.entity import (
    GrantInfo,
    NoteInfo,
    OrganizationInfo,
    ProjectAttrs,
    ProjectInfo,
    TaskAttrs,
    TaskInfo,
)
from src.services.auth_service import AuthService


@pytest.fixture
def client():
    with (
        patch("src.main.init_database", new_callable=AsyncMock),
        patch("src.main.run_migrations", new_callable=AsyncMock),
        patch("src.main.close_database", new_callable=AsyncMock),
    ):
        from fastapi.testclient import TestClient
        from src.main import app

        with TestClient(app) as tc:
            yield tc


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def headers(user_id):
    token = AuthService().create_access_token(user_id, uuid4())
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def entity_service():
    targets = [
        "src.api.organizations.EntityService",
        "src.api.projects.EntityService",
        "src.api.tasks.EntityService",
        "src.api.members.EntityService",
    ]
    instance = MagicMock()
    patchers = [patch(t, return_value=instance) for t in targets]
    for p in patchers:
        p.start()
    yield instance
    for p in patchers:
        p.stop()


@pytest.fixture
def note_service():
    with patch("src.api.notes.NoteService") as cls:
        instance = MagicMock()
        cls.return_value = instance
        yield instance


class TestOrganizations:
    def test_create(self, client, headers, user_id, entity_service):
        org_id = uuid4()
        entity_service.create_entity = AsyncMock(
            return_value=OrganizationInfo(
                id=org_id, name="Tech Corp", name_alias="techcorp", role=Role.OWNER
            )
        )

        response = client.post("/organizations", json={"name": "Tech Corp"}, headers=headers)

        assert response.status_code == 201
        assert response.json()["role"] == "owner"
        kind, parent_id, attrs, creator = entity_service.create_entity.call_args.args
        assert (kind, parent_id, creator) == (EntityKind.ORGANIZATION, None, user_id)
        assert attrs.name == "Tech Corp"

    def test_invalid_name_is_400(self, client, headers, entity_service):
        entity_service.create_entity = AsyncMock()
        response = client.post("/organizations", json={"name": "T$"}, headers=headers)
        assert response.status_code == 400
        entity_service.create_entity.assert_not_called()

    def test_requires_token(self, client, entity_service):
        response = client.post("/organizations", json={"name": "Tech Corp"})
        assert response.status_code == 401

    def test_delete(self, client, headers, user_id, entity_service):
        org_id = uuid4()
        entity_service.delete_entity = AsyncMock()

        response = client.delete(f"/organizations/{org_id}", headers=headers)

        assert response.status_code == 200
        entity_service.delete_entity.assert_awaited_once_with(
            EntityKind.ORGANIZATION, org_id, user_id
        )

    def test_delete_forbidden(self, client, headers, entity_service):
        entity_service.delete_entity = AsyncMock(side_effect=PermissionDenied())
        response = client.delete(f"/organizations/{uuid4()}", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    def test_delete_missing(self, client, headers, entity_service):
        entity_service.delete_entity = AsyncMock(side_effect=NotFound("Organization not found"))
        response = client.delete(f"/organizations/{uuid4()}", headers=headers)
        assert response.status_code == 404


class TestProjectsAndTasks:
    def test_create_project(self, client, headers, user_id, entity_service):
        org_id, project_id = uuid4(), uuid4()
        entity_service.create_entity = AsyncMock(
            return_value=ProjectInfo(
                id=project_id, organization_id=org_id, title="P1", role=Role.OWNER
            )
        )

        response = client.post(
            "/projects", json={"organization_id": str(org_id), "title": "P1"}, headers=headers
        )

        assert response.status_code == 201
        kind, parent_id, attrs, creator = entity_service.create_entity.call_args.args
        assert (kind, parent_id, creator) == (EntityKind.PROJECT, org_id, user_id)
        assert isinstance(attrs, ProjectAttrs) and attrs.title == "P1"

    def test_create_project_without_access(self, client, headers, entity_service):
        entity_service.create_entity = AsyncMock(side_effect=NoAccess())
        response = client.post(
            "/projects", json={"organization_id": str(uuid4()), "title": "P1"}, headers=headers
        )
        assert response.status_code == 403
        assert response.json()["error"] == "no_access"

    def test_create_subtask(self, client, headers, entity_service):
        task_id = uuid4()
        entity_service.create_entity = AsyncMock(
            return_value=TaskInfo(id=uuid4(), parent_id=task_id, title="S", role=Role.OWNER)
        )

        response = client.post(
            "/subtasks",
            json={"task_id": str(task_id), "title": "S", "status": "in_progress"},
            headers=headers,
        )

        assert response.status_code == 201
        kind, parent_id, attrs, _ = entity_service.create_entity.call_args.args
        assert (kind, parent_id) == (EntityKind.SUBTASK, task_id)
        assert isinstance(attrs, TaskAttrs) and attrs.status.value == "in_progress"

    def test_delete_subtask(self, client, headers, user_id, entity_service):
        subtask_id = uuid4()
        entity_service.delete_entity = AsyncMock()
        response = client.delete(f"/subtasks/{subtask_id}", headers=headers)
        assert response.status_code == 200
        entity_service.delete_entity.assert_awaited_once_with(
            EntityKind.SUBTASK, subtask_id, user_id
        )

    def test_list_project_tasks(self, client, headers, user_id, entity_service):
        project_id = uuid4()
        entity_service.list_project_tasks = AsyncMock(
            return_value=[
                TaskInfo(id=uuid4(), parent_id=project_id, title="T1", role=Role.GUEST)
            ]
        )

        response = client.get(f"/projects/{project_id}/tasks", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert [(t["title"], t["role"]) for t in body] == [("T1", "guest")]
        entity_service.list_project_tasks.assert_awaited_once_with(project_id, user_id)

    def test_list_project_tasks_without_access(self, client, headers, entity_service):
        entity_service.list_project_tasks = AsyncMock(side_effect=NoAccess())
        response = client.get(f"/projects/{uuid4()}/tasks", headers=headers)
        assert response.status_code == 403


class TestMembers:
    def test_add_member(self, client, headers, user_id, entity_service):
        project_id, target = uuid4(), uuid4()
        entity_service.add_member = AsyncMock(
            return_value=GrantInfo(
                user_id=target,
                entity=EntityRef(kind=EntityKind.PROJECT, id=project_id),
                role=Role.MEMBER,
            )
        )

        response = client.post(
            f"/projects/{project_id}/members",
            json={"user_id": str(target), "role": "member"},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["entity"] == {"kind": "project", "id": str(project_id)}
        entity_service.add_member.assert_awaited_once_with(
            EntityKind.PROJECT, project_id, target, "member", user_id
        )

    def test_add_member_invalid_role(self, client, headers, entity_service):
        entity_service.add_member = AsyncMock(side_effect=InvalidRole())
        response = client.post(
            f"/tasks/{uuid4()}/members",
            json={"user_id": str(uuid4()), "role": "administrator"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_role"

    def test_remove_member(self, client, headers, user_id, entity_service):
        org_id, target = uuid4(), uuid4()
        entity_service.remove_member = AsyncMock()

        response = client.delete(f"/organizations/{org_id}/members/{target}", headers=headers)

        assert response.status_code == 200
        entity_service.remove_member.assert_awaited_once_with(
            EntityKind.ORGANIZATION, org_id, target, user_id
        )

    def test_remove_last_owner(self, client, headers, entity_service):
        entity_service.remove_member = AsyncMock(side_effect=LastOwnerConstraint())
        response = client.delete(f"/tasks/{uuid4()}/members/{uuid4()}", headers=headers)
        assert response.status_code == 409
        assert response.json()["error"] == "last_owner_constraint"


class TestNotes:
    def _note(self, author_id, entity=None):
        return NoteInfo(
            id=uuid4(),
            author_id=author_id,
            entity=entity,
            content="remember",
            created_at=datetime.now(timezone.utc),
        )

    def test_create_attached(self, client, headers, user_id, note_service):
        task = EntityRef(kind=EntityKind.TASK, id=uuid4())
        note_service.create_note = AsyncMock(return_value=self._note(user_id, task))

        response = client.post(
            "/notes",
            json={"content": "remember", "entity": {"kind": "task", "id": str(task.id)}},
            headers=headers,
        )

        assert response.status_code == 201
        author, entity, attrs = note_service.create_note.call_args.args
        assert (author, entity) == (user_id, task)
        assert attrs.content == "remember"

    def test_get(self, client, headers, user_id, note_service):
        note = self._note(user_id)
        note_service.get_note = AsyncMock(return_value=note)

        response = client.get(f"/notes/{note.id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["entity"] is None

    def test_delete(self, client, headers, user_id, note_service):
        note_id = uuid4()
        note_service.delete_note = AsyncMock()
        response = client.delete(f"/notes/{note_id}", headers=headers)
        assert response.status_code == 200
        note_service.delete_note.assert_awaited_once_with(note_id, user_id)
