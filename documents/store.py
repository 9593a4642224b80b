"""
documents/store.py -- SQLAlchemy Core persistence for folders, files,
notifications, activities and logs.

Pattern: Repository + Data Mapper, same as auth/store.py. DocumentStore is the
repository; _row_to_* functions are the mappers.

Every list query takes a ScopeFilter from auth.scope and turns it into a WHERE
clause, so out-of-scope rows are never loaded in the first place. How a scope
maps onto each table:

  folders        folders.user_id IN scope.user_ids
  files          owning folder's user_id IN scope.user_ids (joined)
  notifications  user_id IN scope.user_ids AND for_role IN scope.for_roles
  activities     user_id IN scope.user_ids
                 OR subject_user_id IN scope.subject_ids
                 OR metadata LIKE '%<id>%' for each id in scope.metadata_ids

Cascading deletes that cross tables (client deletion, reset-system) live in
documents/maintenance.py so they can share one transaction with the users
table.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, Text, and_, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Role
from auth.scope import ScopeFilter
from auth.store import scope_clause, users
from core.db import metadata, new_id, now_iso
from documents.models import Activity, Category, File, Folder, LogEntry, LogLevel, Notification, RecentUpload

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

folders = Table(
    "folders",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("category", String(20), nullable=False),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)

files = Table(
    "files",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("folder_id", String(32), ForeignKey("folders.id"), nullable=False, index=True),
    Column("file_name", String(255), nullable=False),
    Column("file_type", String(10), nullable=False),
    Column("storage_key", String(100), nullable=False),
    Column("content_type", String(50), nullable=False),
    Column("size", Integer, nullable=False, server_default="0"),
    Column("notes", Text),
    Column("created_at", String(32), nullable=False),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False, index=True),
    Column("for_role", String(10), nullable=False),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False),
    Column("type", String(50), nullable=False),
    Column("is_read", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

# Activities outlive the users they mention: no foreign keys here.
activities = Table(
    "activities",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("type", String(50), nullable=False),
    Column("description", Text, nullable=False),
    Column("user_id", String(32), index=True),
    Column("user_name", String(100)),
    Column("user_role", String(10)),
    Column("target_id", String(32)),
    Column("target_name", String(255)),
    Column("target_type", String(20)),
    Column("subject_user_id", String(32), index=True),
    Column("metadata", Text),
    Column("created_at", String(32), nullable=False),
)

logs = Table(
    "logs",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("level", String(10), nullable=False),
    Column("message", Text, nullable=False),
    Column("metadata", Text),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Scope clauses
# ---------------------------------------------------------------------------


def _notification_scope(scope: ScopeFilter):
    conditions = []
    clause = scope_clause(scope, notifications.c.user_id)
    if clause is not None:
        conditions.append(clause)
    if scope.for_roles is not None:
        conditions.append(notifications.c.for_role.in_(sorted(r.value for r in scope.for_roles)))
    return and_(*conditions) if conditions else None


def _activity_scope(scope: ScopeFilter):
    if scope.user_ids is None:
        return None
    parts = [activities.c.user_id.in_(sorted(scope.user_ids))]
    if scope.subject_ids:
        parts.append(activities.c.subject_user_id.in_(sorted(scope.subject_ids)))
    # Legacy rows: the client id only appears inside the metadata JSON.
    for client_id in sorted(scope.metadata_ids):
        parts.append(activities.c["metadata"].contains(client_id, autoescape=True))
    return or_(*parts)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DocumentStore:
    """Repository for folders, files, notifications, activities and logs.

    Usage:
        store = DocumentStore(engine)
        folder_id = store.create_folder(Folder(name="Car", category=Category.CAR, user_id=client_id))
        folders = store.list_folders(policy.scope(actor, Entity.FOLDER))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def create_folder(self, folder: Folder) -> str:
        folder_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                folders.insert().values(
                    id=folder_id,
                    name=folder.name,
                    category=Category(folder.category).value,
                    user_id=folder.user_id,
                    created_at=now_iso(),
                )
            )
        return folder_id

    def _folder_query(self):
        counts = select(files.c.folder_id, func.count().label("n")).group_by(files.c.folder_id).subquery()
        return select(folders, func.coalesce(counts.c.n, 0).label("file_count")).outerjoin(
            counts, counts.c.folder_id == folders.c.id
        )

    def get_folder(self, folder_id: str) -> Folder | None:
        with self.engine.connect() as conn:
            row = conn.execute(self._folder_query().where(folders.c.id == folder_id)).fetchone()
        return _row_to_folder(row) if row is not None else None

    def list_folders(
        self,
        scope: ScopeFilter,
        user_id: str | None = None,
        category: Category | None = None,
    ) -> list[Folder]:
        """Folders visible in scope, newest first, optionally narrowed by owner and category."""
        query = self._folder_query()
        clause = scope_clause(scope, folders.c.user_id)
        if clause is not None:
            query = query.where(clause)
        if user_id is not None:
            query = query.where(folders.c.user_id == user_id)
        if category is not None:
            query = query.where(folders.c.category == Category(category).value)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(folders.c.created_at.desc())).fetchall()
        return [_row_to_folder(r) for r in rows]

    def update_folder(self, folder_id: str, **fields) -> bool:
        """Update name and/or category. Returns True if a row changed."""
        if "category" in fields:
            fields["category"] = Category(fields["category"]).value
        if not fields:
            return False
        with self.engine.begin() as conn:
            result = conn.execute(folders.update().where(folders.c.id == folder_id).values(**fields))
        return result.rowcount > 0

    def delete_folder(self, folder_id: str) -> list[str]:
        """Delete a folder and its file rows. Returns the storage keys of the removed files."""
        with self.engine.begin() as conn:
            keys = [
                r.storage_key
                for r in conn.execute(select(files.c.storage_key).where(files.c.folder_id == folder_id)).fetchall()
            ]
            conn.execute(files.delete().where(files.c.folder_id == folder_id))
            conn.execute(folders.delete().where(folders.c.id == folder_id))
        return keys

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def create_file(self, file: File) -> str:
        file_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                files.insert().values(
                    id=file_id,
                    folder_id=file.folder_id,
                    file_name=file.file_name,
                    file_type=file.file_type,
                    storage_key=file.storage_key,
                    content_type=file.content_type,
                    size=file.size,
                    notes=file.notes,
                    created_at=now_iso(),
                )
            )
        return file_id

    def get_file(self, file_id: str) -> File | None:
        with self.engine.connect() as conn:
            row = conn.execute(files.select().where(files.c.id == file_id)).fetchone()
        return _row_to_file(row) if row is not None else None

    def list_files(
        self,
        scope: ScopeFilter,
        user_id: str | None = None,
        folder_id: str | None = None,
        limit: int | None = None,
    ) -> list[File]:
        """Files whose folder owner is in scope, newest first."""
        query = select(files).join(folders, files.c.folder_id == folders.c.id)
        clause = scope_clause(scope, folders.c.user_id)
        if clause is not None:
            query = query.where(clause)
        if user_id is not None:
            query = query.where(folders.c.user_id == user_id)
        if folder_id is not None:
            query = query.where(files.c.folder_id == folder_id)
        query = query.order_by(files.c.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_file(r) for r in rows]

    def recent_uploads(self, scope: ScopeFilter, since: str, limit: int = 5) -> list[RecentUpload]:
        """Files created at or after since (ISO 8601) in scope, newest first, with folder and owner names."""
        source = files.join(folders, files.c.folder_id == folders.c.id).join(users, folders.c.user_id == users.c.id)
        query = (
            select(
                files.c.id,
                files.c.file_name,
                files.c.created_at,
                folders.c.id.label("folder_id"),
                folders.c.name.label("folder_name"),
                users.c.id.label("owner_id"),
                users.c.name.label("owner_name"),
            )
            .select_from(source)
            .where(files.c.created_at >= since)
        )
        clause = scope_clause(scope, folders.c.user_id)
        if clause is not None:
            query = query.where(clause)
        query = query.order_by(files.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            RecentUpload(
                file_id=r.id,
                file_name=r.file_name,
                folder_id=r.folder_id,
                folder_name=r.folder_name,
                owner_id=r.owner_id,
                owner_name=r.owner_name,
                created_at=r.created_at,
            )
            for r in rows
        ]

    def update_file_notes(self, file_id: str, notes: str | None) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(files.update().where(files.c.id == file_id).values(notes=notes))
        return result.rowcount > 0

    def delete_file(self, file_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(files.delete().where(files.c.id == file_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(self, notification: Notification) -> str:
        notification_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                notifications.insert().values(
                    id=notification_id,
                    user_id=notification.user_id,
                    for_role=Role(notification.for_role).value,
                    title=notification.title,
                    description=notification.description,
                    type=notification.type,
                    is_read=notification.is_read,
                    created_at=now_iso(),
                )
            )
        return notification_id

    def get_notification(self, notification_id: str) -> Notification | None:
        with self.engine.connect() as conn:
            row = conn.execute(notifications.select().where(notifications.c.id == notification_id)).fetchone()
        return _row_to_notification(row) if row is not None else None

    def list_notifications(self, scope: ScopeFilter, limit: int = 50) -> list[Notification]:
        query = notifications.select()
        clause = _notification_scope(scope)
        if clause is not None:
            query = query.where(clause)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(notifications.c.created_at.desc()).limit(limit)).fetchall()
        return [_row_to_notification(r) for r in rows]

    def set_notification_read(self, notification_id: str, is_read: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                notifications.update().where(notifications.c.id == notification_id).values(is_read=is_read)
            )
        return result.rowcount > 0

    def delete_notification(self, notification_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(notifications.delete().where(notifications.c.id == notification_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def log_activity(self, activity: Activity) -> str:
        activity_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                activities.insert().values(
                    {
                        "id": activity_id,
                        "type": activity.type,
                        "description": activity.description,
                        "user_id": activity.user_id,
                        "user_name": activity.user_name,
                        "user_role": activity.user_role,
                        "target_id": activity.target_id,
                        "target_name": activity.target_name,
                        "target_type": activity.target_type,
                        "subject_user_id": activity.subject_user_id,
                        "metadata": activity.metadata,
                        "created_at": now_iso(),
                    }
                )
            )
        return activity_id

    def list_activities(self, scope: ScopeFilter, limit: int = 20) -> list[Activity]:
        query = activities.select()
        clause = _activity_scope(scope)
        if clause is not None:
            query = query.where(clause)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(activities.c.created_at.desc()).limit(limit)).fetchall()
        return [_row_to_activity(r) for r in rows]

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def add_log(self, entry: LogEntry) -> str:
        log_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                logs.insert().values(
                    {
                        "id": log_id,
                        "level": LogLevel(entry.level).value,
                        "message": entry.message,
                        "metadata": entry.metadata,
                        "created_at": now_iso(),
                    }
                )
            )
        return log_id

    def get_log(self, log_id: str) -> LogEntry | None:
        with self.engine.connect() as conn:
            row = conn.execute(logs.select().where(logs.c.id == log_id)).fetchone()
        return _row_to_log(row) if row is not None else None

    def list_logs(self, level: LogLevel | None = None, limit: int = 100, offset: int = 0) -> tuple[list[LogEntry], int]:
        """Return (page, total) of log entries, newest first."""
        conditions = [logs.c.level == LogLevel(level).value] if level is not None else []
        query = logs.select().where(*conditions).order_by(logs.c.created_at.desc()).limit(limit).offset(offset)
        count = select(func.count()).select_from(logs).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count).scalar() or 0
        return [_row_to_log(r) for r in rows], total


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_folder(row) -> Folder:
    m = row._mapping
    return Folder(
        id=m["id"],
        name=m["name"],
        category=Category(m["category"]),
        user_id=m["user_id"],
        created_at=m["created_at"],
        file_count=m.get("file_count", 0) or 0,
    )


def _row_to_file(row) -> File:
    return File(
        id=row.id,
        folder_id=row.folder_id,
        file_name=row.file_name,
        file_type=row.file_type,
        storage_key=row.storage_key,
        content_type=row.content_type,
        size=row.size,
        notes=row.notes,
        created_at=row.created_at,
    )


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        for_role=Role(row.for_role),
        title=row.title,
        description=row.description,
        type=row.type,
        is_read=bool(row.is_read),
        created_at=row.created_at,
    )


def _row_to_activity(row) -> Activity:
    m = row._mapping
    return Activity(
        id=m["id"],
        type=m["type"],
        description=m["description"],
        user_id=m["user_id"],
        user_name=m["user_name"],
        user_role=m["user_role"],
        target_id=m["target_id"],
        target_name=m["target_name"],
        target_type=m["target_type"],
        subject_user_id=m["subject_user_id"],
        metadata=m["metadata"],
        created_at=m["created_at"],
    )


def _row_to_log(row) -> LogEntry:
    m = row._mapping
    return LogEntry(
        id=m["id"],
        level=LogLevel(m["level"]),
        message=m["message"],
        metadata=m["metadata"],
        created_at=m["created_at"],
    )
