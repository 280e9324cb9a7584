"""Entity hierarchy models: organizations, projects, tasks, subtasks, notes."""

import re
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.models.access import EntityRef, Role

NAME_ALIAS_PATTERN = re.compile(r"^[a-z0-9]+$")
DECORATION_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
ORGANIZATION_NAME_PATTERN = re.compile(r"^[\w ]+$")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _check_color(v: Optional[str]) -> Optional[str]:
    if v is not None and not DECORATION_COLOR_PATTERN.match(v):
        raise ValueError("Decoration color must look like #RRGGBB")
    return v


# ---------------------------------------------------------------------------
# Creation attributes
# ---------------------------------------------------------------------------

class OrganizationAttrs(BaseModel):
    """Attributes of a new organization.

    Attributes:
        name: 3-20 chars, letters, digits and spaces only
        name_alias: Unique lowercase identifier; derived from name when omitted
        description: Short info about the organization
        contact_info: Contacts, e.g. the owner's email
    """

    name: str
    name_alias: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=2000)
    contact_info: Optional[str] = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def name_valid(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Name cannot be empty")
        if len(stripped) < 3 or len(stripped) > 20:
            raise ValueError("Name must be between 3 and 20 characters")
        if not ORGANIZATION_NAME_PATTERN.match(stripped) or "_" in stripped:
            raise ValueError("Name cannot contain special symbols")
        return stripped

    @field_validator("name_alias")
    @classmethod
    def alias_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not NAME_ALIAS_PATTERN.match(v):
            raise ValueError("Alias must contain only lowercase letters and digits")
        return v


class ProjectAttrs(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    decoration_color: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace only")
        return v.strip()

    @field_validator("decoration_color")
    @classmethod
    def color_valid(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)


class TaskAttrs(BaseModel):
    """Attributes shared by tasks and subtasks."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: TaskStatus = TaskStatus.PENDING
    priority: Optional[str] = Field(default=None, max_length=16)
    assigned_to: Optional[UUID] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace only")
        return v.strip()


class NoteAttrs(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)
    tags: Optional[str] = Field(default=None, max_length=255)
    decoration_color: Optional[str] = None

    @field_validator("decoration_color")
    @classmethod
    def color_valid(cls, v: Optional[str]) -> Optional[str]:
        return _check_color(v)


# ---------------------------------------------------------------------------
# API requests
# ---------------------------------------------------------------------------

class CreateProjectRequest(ProjectAttrs):
    organization_id: UUID


class CreateTaskRequest(TaskAttrs):
    project_id: UUID


class CreateSubtaskRequest(TaskAttrs):
    task_id: UUID


class CreateNoteRequest(NoteAttrs):
    """A note attached to one entity, or personal when ``entity`` is null."""

    entity: Optional[EntityRef] = None


class AddMemberRequest(BaseModel):
    """Role is checked against the entity kind by the service."""

    user_id: UUID
    role: str = Field(..., min_length=1, max_length=32)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class OrganizationInfo(BaseModel):
    id: UUID
    name: str
    name_alias: str
    description: Optional[str] = None
    contact_info: Optional[str] = None
    role: Optional[Role] = None


class ProjectInfo(BaseModel):
    id: UUID
    organization_id: UUID
    title: str
    description: Optional[str] = None
    decoration_color: Optional[str] = None
    role: Optional[Role] = None


class TaskInfo(BaseModel):
    id: UUID
    parent_id: UUID
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Optional[str] = None
    assigned_to: Optional[UUID] = None
    due_date: Optional[datetime] = None
    role: Optional[Role] = None


class NoteInfo(BaseModel):
    id: UUID
    author_id: UUID
    entity: Optional[EntityRef] = None
    content: str
    tags: Optional[str] = None
    decoration_color: Optional[str] = None
    created_at: datetime


class GrantInfo(BaseModel):
    user_id: UUID
    entity: EntityRef
    role: Role


class StatusResponse(BaseModel):
    success: bool
