"""
API request and response models for the AgentPro REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py and documents/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (agentId, formerAgentName, createdAt) to match the
existing web client. Every model accepts both camelCase and snake_case input.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from documents.models import Activity, Category, File, Folder, LogEntry, LogLevel, Notification

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorResponse(_ApiModel):
    """Envelope for every non-2xx response."""

    error: str
    message: Optional[str] = None


class MessageResponse(_ApiModel):
    success: bool = True
    message: str


class HealthResponse(_ApiModel):
    status: str = "ok"
    version: str


class DbHealthResponse(_ApiModel):
    status: str
    database: str
    latency_ms: float


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(_ApiModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(_ApiModel):
    # Optional so a missing email reaches the reset manager and gets its
    # localized message instead of a generic validation error.
    email: Optional[str] = Field(default=None, max_length=255)


class ResetPasswordRequest(_ApiModel):
    token: Optional[str] = Field(default=None, max_length=128)
    password: Optional[str] = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(_ApiModel):
    id: str
    email: str
    name: str
    role: Role
    phone: Optional[str] = None
    id_number: Optional[str] = None
    agent_id: Optional[str] = None
    former_agent_name: Optional[str] = None
    logo_url: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def of(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            phone=user.phone,
            id_number=user.id_number,
            agent_id=user.agent_id,
            former_agent_name=user.former_agent_name,
            logo_url=user.logo_url,
            created_at=user.created_at,
        )


class LoginResponse(_ApiModel):
    user: UserResponse
    expires_in: int


class SessionResponse(_ApiModel):
    user: Optional[UserResponse] = None


class UserListResponse(_ApiModel):
    users: list[UserResponse]
    total: int
    limit: int
    offset: int


class UserCreate(_ApiModel):
    """Request body for POST /api/users.

    role and agentId are requests, not commands: for agents the role is
    always CLIENT and agentId is always the agent itself.
    """

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)
    skip_password: bool = False
    role: Optional[Role] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    id_number: Optional[str] = Field(default=None, max_length=9)
    agent_id: Optional[str] = Field(default=None, max_length=32)
    logo_url: Optional[str] = Field(default=None, max_length=2000)


class UserUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, max_length=128)
    phone: Optional[str] = Field(default=None, max_length=20)
    id_number: Optional[str] = Field(default=None, max_length=9)
    logo_url: Optional[str] = Field(default=None, max_length=2000)


class RegisterRequest(_ApiModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(max_length=128)
    phone: Optional[str] = Field(default=None, max_length=20)
    id_number: Optional[str] = Field(default=None, max_length=9)
    agent_id: Optional[str] = Field(default=None, max_length=32)


class RegisterResponse(_ApiModel):
    id: str
    name: str
    email: str
    message: str


class AgentInfoResponse(_ApiModel):
    """Public card shown on an agent's registration page."""

    id: str
    name: str
    email: str
    logo_url: Optional[str] = None


class LogoUploadResponse(_ApiModel):
    url: str


# ---------------------------------------------------------------------------
# Orphaned clients
# ---------------------------------------------------------------------------


class OrphanedClientsResponse(_ApiModel):
    clients: list[UserResponse]
    grouped_by_agent: dict[str, list[UserResponse]]
    total_count: int


class OrphanAssignRequest(_ApiModel):
    client_ids: list[str] = Field(min_length=1, max_length=500)
    new_agent_id: str = Field(min_length=1, max_length=32)


class OrphanAssignResponse(_ApiModel):
    success: bool = True
    assigned_count: int
    new_agent_name: str


class OrphanDeleteResponse(_ApiModel):
    success: bool = True
    deleted_count: int


# ---------------------------------------------------------------------------
# Folders / files
# ---------------------------------------------------------------------------


class FolderCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=200)
    category: Category
    user_id: Optional[str] = Field(default=None, max_length=32)


class FolderUpdate(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[Category] = None


class FolderResponse(_ApiModel):
    id: str
    name: str
    category: Category
    user_id: str
    file_count: int = 0
    created_at: Optional[str] = None

    @classmethod
    def of(cls, folder: Folder) -> "FolderResponse":
        return cls(
            id=folder.id,
            name=folder.name,
            category=folder.category,
            user_id=folder.user_id,
            file_count=folder.file_count,
            created_at=folder.created_at,
        )


class FileInfo(_ApiModel):
    id: str
    folder_id: str
    file_name: str
    file_type: str
    content_type: str
    size: int
    notes: Optional[str] = None
    url: str
    created_at: Optional[str] = None

    @classmethod
    def of(cls, file: File) -> "FileInfo":
        return cls(
            id=file.id,
            folder_id=file.folder_id,
            file_name=file.file_name,
            file_type=file.file_type,
            content_type=file.content_type,
            size=file.size,
            notes=file.notes,
            url=f"/api/files/{file.id}/download",
            created_at=file.created_at,
        )


class FileUpdate(_ApiModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Notifications / activities
# ---------------------------------------------------------------------------


class NotificationCreate(_ApiModel):
    user_id: str = Field(min_length=1, max_length=32)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    type: str = Field(min_length=1, max_length=50)
    for_role: Optional[Role] = None


class NotificationPatch(_ApiModel):
    is_read: bool


class NotificationResponse(_ApiModel):
    id: str
    user_id: str
    for_role: Role
    title: str
    description: str
    type: str
    is_read: bool
    created_at: Optional[str] = None

    @classmethod
    def of(cls, n: Notification) -> "NotificationResponse":
        return cls(
            id=n.id,
            user_id=n.user_id,
            for_role=n.for_role,
            title=n.title,
            description=n.description,
            type=n.type,
            is_read=n.is_read,
            created_at=n.created_at,
        )


class ActivityResponse(_ApiModel):
    id: str
    type: str
    description: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    target_type: Optional[str] = None
    subject_user_id: Optional[str] = None
    metadata: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def of(cls, a: Activity) -> "ActivityResponse":
        return cls(
            id=a.id,
            type=a.type,
            description=a.description,
            user_id=a.user_id,
            user_name=a.user_name,
            user_role=a.user_role,
            target_id=a.target_id,
            target_name=a.target_name,
            target_type=a.target_type,
            subject_user_id=a.subject_user_id,
            metadata=a.metadata,
            created_at=a.created_at,
        )


class DashboardItem(_ApiModel):
    """One entry of the dashboard feed: a new client or a new file."""

    id: str
    type: str
    title: str
    subtitle: Optional[str] = None
    link: str
    created_at: str


# ---------------------------------------------------------------------------
# Admin / logs
# ---------------------------------------------------------------------------


class ResetSystemRequest(_ApiModel):
    confirm: Optional[str] = None


class LogCreate(_ApiModel):
    """Client-side error report. Extra context fields are folded into metadata."""

    message: str = Field(min_length=1, max_length=5000)
    error_level: Optional[LogLevel] = None
    stack: Optional[str] = Field(default=None, max_length=20000)
    component_name: Optional[str] = Field(default=None, max_length=200)
    user_id: Optional[str] = Field(default=None, max_length=32)
    device_info: Optional[dict[str, Any]] = None
    url: Optional[str] = Field(default=None, max_length=2000)
    metadata: Optional[dict[str, Any]] = None


class LogResponse(_ApiModel):
    id: str
    level: LogLevel
    message: str
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[str] = None

    @classmethod
    def of(cls, entry: LogEntry) -> "LogResponse":
        parsed = None
        if entry.metadata:
            try:
                parsed = json.loads(entry.metadata)
            except ValueError:
                parsed = {"raw": entry.metadata}
            if not isinstance(parsed, dict):
                parsed = {"raw": entry.metadata}
        return cls(
            id=entry.id,
            level=entry.level,
            message=entry.message,
            metadata=parsed,
            created_at=entry.created_at,
        )


class LogListResponse(_ApiModel):
    logs: list[LogResponse]
    total: int
