"""
api/routes/activities.py -- Activity feed.

Routes:
  GET /api/activities?limit=20   -- recent activities in the caller's scope
  GET /api/activity              -- dashboard feed: new clients and files, last 7 days

Scope (see auth/scope.py): ADMIN sees everything; AGENT sees its own rows,
rows by its clients, rows about its clients (subject_user_id) and, while
legacy matching is on, rows whose metadata mentions a client id; CLIENT sees
only its own rows.

record_activity() is the single write path, used by the other routers.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query, Request

from api.models import ActivityResponse, DashboardItem
from auth.dependencies import get_actor
from auth.models import Role, User
from auth.scope import Actor, Entity
from documents.models import Activity
from documents.store import DocumentStore

logger = logging.getLogger("agentpro.activity")

router = APIRouter()

FEED_WINDOW = timedelta(days=7)
FEED_PER_SOURCE = 5
FEED_LIMIT = 10


def record_activity(
    store: DocumentStore,
    user: User | None,
    type: str,
    description: str,
    target_id: str | None = None,
    target_name: str | None = None,
    target_type: str | None = None,
    subject_user_id: str | None = None,
    metadata: dict | None = None,
) -> str:
    """Append an activity row attributed to user (None for anonymous actions)."""
    return store.log_activity(
        Activity(
            type=type,
            description=description,
            user_id=user.id if user else None,
            user_name=user.name if user else None,
            user_role=user.role.value if user else None,
            target_id=target_id,
            target_name=target_name,
            target_type=target_type,
            subject_user_id=subject_user_id,
            metadata=json.dumps(metadata, ensure_ascii=False) if metadata else None,
        )
    )


@router.get("/activities", response_model=list[ActivityResponse])
def list_activities(
    request: Request,
    limit: int = Query(default=20, ge=1, le=200),
    actor: Actor = Depends(get_actor),
) -> list[ActivityResponse]:
    scope = request.app.state.policy.scope(actor, Entity.ACTIVITY)
    rows = request.app.state.document_store.list_activities(scope, limit=limit)
    return [ActivityResponse.of(a) for a in rows]


@router.get("/activity", response_model=list[DashboardItem])
def dashboard_feed(request: Request, actor: Actor = Depends(get_actor)) -> list[DashboardItem]:
    """Clients and files added in the last week, newest first.

    Built from the users and files tables rather than the activity log, each
    side scoped like its own listing endpoint.
    """
    since = (datetime.now(timezone.utc) - FEED_WINDOW).isoformat(timespec="microseconds")
    policy = request.app.state.policy
    clients, _ = request.app.state.user_store.list_users(
        policy.scope(actor, Entity.USER), role=Role.CLIENT, limit=FEED_PER_SOURCE, created_since=since
    )
    uploads = request.app.state.document_store.recent_uploads(
        policy.scope(actor, Entity.FILE), since, limit=FEED_PER_SOURCE
    )

    items = [
        DashboardItem(
            id=f"client-{c.id}",
            type="NEW_CLIENT",
            title=f"לקוח חדש נרשם: {c.name}",
            link="/agent/clients",
            created_at=c.created_at,
        )
        for c in clients
    ]
    items.extend(
        DashboardItem(
            id=f"file-{u.file_id}",
            type="NEW_FILE",
            title=f"קובץ חדש: {u.file_name}",
            subtitle=f"בתיקיית {u.folder_name} של {u.owner_name}",
            link=f"/agent/clients/{u.owner_id}/folders/{u.folder_id}",
            created_at=u.created_at,
        )
        for u in uploads
    )
    items.sort(key=lambda item: item.created_at, reverse=True)
    return items[:FEED_LIMIT]
