"""
documents/models.py -- Domain dataclasses for folders, files, notifications,
activities and log entries.

Pure data containers. Stores map rows into these; routes serialize them
through the response models in api/models.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.models import Role


class Category(str, Enum):
    INSURANCE = "INSURANCE"
    FINANCE = "FINANCE"
    CAR = "CAR"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class Folder:
    """A named, categorized container of files owned by one user (usually a CLIENT)."""

    name: str
    category: Category
    user_id: str
    id: str | None = None
    created_at: str | None = None
    file_count: int = 0


@dataclass
class File:
    """Metadata for one uploaded document.

    storage_key names the bytes in documents.storage.LocalStorage. file_type
    is the upper-cased extension ("PDF", "PNG", "JPG").
    """

    folder_id: str
    file_name: str
    file_type: str
    storage_key: str
    content_type: str
    size: int = 0
    notes: str | None = None
    id: str | None = None
    created_at: str | None = None


@dataclass
class Notification:
    """A message addressed to one user.

    for_role is the audience the notification was written for; it defaults
    to the recipient's role at creation time.
    """

    user_id: str
    for_role: Role
    title: str
    description: str
    type: str
    is_read: bool = False
    id: str | None = None
    created_at: str | None = None


@dataclass
class Activity:
    """An audit-trail entry.

    user_id is the acting user. subject_user_id is the client the activity
    is about, when there is one. metadata is free-form JSON text; rows written
    before subject_user_id existed only mention the client there.
    """

    type: str
    description: str
    user_id: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    target_id: str | None = None
    target_name: str | None = None
    target_type: str | None = None
    subject_user_id: str | None = None
    metadata: str | None = None
    id: str | None = None
    created_at: str | None = None


@dataclass
class LogEntry:
    message: str
    level: LogLevel = LogLevel.INFO
    metadata: str | None = None
    id: str | None = None
    created_at: str | None = None


@dataclass
class RecentUpload:
    """A file joined with its folder and the folder's owner, for the dashboard feed."""

    file_id: str
    file_name: str
    folder_id: str
    folder_name: str
    owner_id: str
    owner_name: str
    created_at: str
