"""
documents/maintenance.py -- Multi-table operations that must be all-or-nothing.

Each function runs on a single engine.begin() transaction spanning the users
table and the document tables:

  delete_user()              -- orphan the user's clients, cascade the user's
                                folders/files/notifications, delete the user.
  delete_orphaned_clients()  -- the same cascade for a batch of orphans.
  reset_system()             -- wipe everything except admins, then upsert the
                                designated admin account.
  system_stats()             -- row counts for the reset-system preview.

Functions that remove file rows return the storage keys so the caller can
delete the bytes after the transaction commits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import Role, User
from auth.passwords import strong_policy
from auth.store import reset_tokens, upsert_admin, users
from auth.tokens import hash_password
from core.config import Settings
from documents.store import activities, files, folders, logs, notifications

logger = logging.getLogger("agentpro.maintenance")

RESET_CONFIRMATION = "RESET_PRODUCTION_DATA"


class AdminPasswordError(RuntimeError):
    """SEED_ADMIN_PASSWORD is missing or fails the strong password policy."""


@dataclass(frozen=True)
class AdminSeed:
    email: str
    name: str
    phone: str
    password_hash: str


def admin_seed(settings: Settings) -> AdminSeed:
    """Build the designated admin from settings, enforcing the strong policy.

    Raises:
        AdminPasswordError: no SEED_ADMIN_PASSWORD, or it fails the policy.
    """
    password = settings.seed_admin_password
    if not password:
        raise AdminPasswordError("SEED_ADMIN_PASSWORD is required to seed the admin account")
    violations = strong_policy(settings).validate(password)
    if violations:
        raise AdminPasswordError("SEED_ADMIN_PASSWORD does not meet the admin password policy: " + "; ".join(violations))
    return AdminSeed(
        email=settings.seed_admin_email,
        name=settings.seed_admin_name,
        phone=settings.seed_admin_phone,
        password_hash=hash_password(password),
    )


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


def _cascade_owned(conn: Connection, user_ids: list[str]) -> list[str]:
    """Delete files, then folders, then notifications owned by user_ids.

    Returns the storage keys of the deleted files.
    """
    if not user_ids:
        return []
    folder_ids = select(folders.c.id).where(folders.c.user_id.in_(user_ids))
    keys = [r.storage_key for r in conn.execute(select(files.c.storage_key).where(files.c.folder_id.in_(folder_ids)))]
    conn.execute(files.delete().where(files.c.folder_id.in_(folder_ids)))
    conn.execute(folders.delete().where(folders.c.user_id.in_(user_ids)))
    conn.execute(notifications.delete().where(notifications.c.user_id.in_(user_ids)))
    return keys


def _delete_users(conn: Connection, user_ids: list[str]) -> int:
    emails = select(users.c.email).where(users.c.id.in_(user_ids))
    conn.execute(reset_tokens.delete().where(reset_tokens.c.email.in_(emails)))
    return conn.execute(users.delete().where(users.c.id.in_(user_ids))).rowcount


def delete_user(engine: Engine, user: User) -> list[str]:
    """Delete user, orphaning any clients it owns.

    Clients keep their folders and files; they get agent_id NULL and
    former_agent_name set to the deleted user's name. The deleted user's own
    folders, files and notifications go with it.

    Returns the storage keys of the user's deleted files.
    """
    with engine.begin() as conn:
        orphaned = conn.execute(
            users.update().where(users.c.agent_id == user.id).values(agent_id=None, former_agent_name=user.name)
        ).rowcount
        keys = _cascade_owned(conn, [user.id])
        _delete_users(conn, [user.id])
    if orphaned:
        logger.info("Orphaned %d clients of deleted user %s", orphaned, user.id)
    return keys


def delete_orphaned_clients(engine: Engine, client_ids: Iterable[str]) -> tuple[int, list[str]]:
    """Delete the given clients if they are still orphaned.

    Ids that are not orphaned CLIENTs are skipped. Returns (deleted count,
    storage keys of the removed files).
    """
    requested = list(client_ids)
    with engine.begin() as conn:
        ids = [
            r.id
            for r in conn.execute(
                select(users.c.id).where(
                    users.c.id.in_(requested)
                    & (users.c.role == Role.CLIENT.value)
                    & users.c.agent_id.is_(None)
                    & users.c.former_agent_name.is_not(None)
                )
            )
        ]
        keys = _cascade_owned(conn, ids)
        deleted = _delete_users(conn, ids) if ids else 0
    return deleted, keys


# ---------------------------------------------------------------------------
# System reset
# ---------------------------------------------------------------------------


def _count(conn: Connection, table, *conditions) -> int:
    return conn.execute(select(func.count()).select_from(table).where(*conditions)).scalar() or 0


def reset_system(engine: Engine, admin: AdminSeed) -> dict:
    """Wipe all non-admin data and upsert the designated admin.

    Deletes files, folders, notifications, activities and logs, then every
    AGENT and CLIENT. Any failure rolls the whole thing back.

    Returns {"deleted": {...}, "remaining": {...}, "admin": {...}, "storage_keys": [...]}.
    """
    non_admin = users.c.role != Role.ADMIN.value
    with engine.begin() as conn:
        keys = [r.storage_key for r in conn.execute(select(files.c.storage_key))]
        deleted = {
            "files": conn.execute(files.delete()).rowcount,
            "folders": conn.execute(folders.delete()).rowcount,
            "notifications": conn.execute(notifications.delete()).rowcount,
            "activities": conn.execute(activities.delete()).rowcount,
            "logs": conn.execute(logs.delete()).rowcount,
        }
        conn.execute(reset_tokens.delete().where(reset_tokens.c.email.in_(select(users.c.email).where(non_admin))))
        conn.execute(users.update().where(users.c.agent_id.is_not(None)).values(agent_id=None))
        deleted["users"] = conn.execute(users.delete().where(non_admin)).rowcount
        upsert_admin(conn, admin.email, admin.name, admin.phone, admin.password_hash)
        remaining = {
            "users": _count(conn, users),
            "folders": _count(conn, folders),
            "files": _count(conn, files),
        }
    logger.warning("System reset: deleted=%s remaining=%s", deleted, remaining)
    return {
        "deleted": deleted,
        "remaining": remaining,
        "admin": {"email": admin.email, "name": admin.name},
        "storage_keys": keys,
    }


def system_stats(engine: Engine) -> dict:
    """Current row counts, grouped the way the reset-system preview shows them."""
    with engine.connect() as conn:
        by_role = dict(conn.execute(select(users.c.role, func.count()).group_by(users.c.role)).fetchall())
        return {
            "users": {
                "total": sum(by_role.values()),
                "admins": by_role.get(Role.ADMIN.value, 0),
                "agents": by_role.get(Role.AGENT.value, 0),
                "clients": by_role.get(Role.CLIENT.value, 0),
            },
            "folders": _count(conn, folders),
            "files": _count(conn, files),
            "notifications": _count(conn, notifications),
            "activities": _count(conn, activities),
            "logs": _count(conn, logs),
        }
