"""
api/routes/notifications.py -- In-app notifications.

Routes:
  GET    /api/notifications        -- the caller's notifications (latest 50)
  POST   /api/notifications        -- send one (AGENT / ADMIN)
  PATCH  /api/notifications/{id}   -- mark read / unread
  DELETE /api/notifications/{id}   -- delete

Agents and clients only see notifications addressed to them and written for
their audience (for_role); admins see all.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.errors import USER_NOT_FOUND_MESSAGE
from api.models import NotificationCreate, NotificationPatch, NotificationResponse
from auth.dependencies import enforce, get_actor
from auth.scope import Action, Actor, Entity, Target
from documents.models import Notification
from documents.store import DocumentStore

logger = logging.getLogger("agentpro.notifications")

NOTIFICATION_NOT_FOUND_MESSAGE = "Notification not found"

router = APIRouter()


def _load(request: Request, notification_id: str) -> tuple[Notification, Target]:
    notification = request.app.state.document_store.get_notification(notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail=NOTIFICATION_NOT_FOUND_MESSAGE)
    target = Target(id=notification.id, owner_id=notification.user_id, for_role=notification.for_role)
    return notification, target


@router.get("/notifications", response_model=list[NotificationResponse])
def list_notifications(request: Request, actor: Actor = Depends(get_actor)) -> list[NotificationResponse]:
    scope = request.app.state.policy.scope(actor, Entity.NOTIFICATION)
    return [NotificationResponse.of(n) for n in request.app.state.document_store.list_notifications(scope, limit=50)]


@router.post("/notifications", response_model=NotificationResponse, status_code=201)
def create_notification(
    request: Request, body: NotificationCreate, actor: Actor = Depends(get_actor)
) -> NotificationResponse:
    """Send a notification to body.userId. forRole defaults to the recipient's role."""
    enforce(request.app.state.policy.decide(actor, Entity.NOTIFICATION, Action.CREATE))
    recipient = request.app.state.user_store.get_by_id(body.user_id)
    if recipient is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND_MESSAGE)
    store: DocumentStore = request.app.state.document_store
    notification_id = store.create_notification(
        Notification(
            user_id=recipient.id,
            for_role=body.for_role or recipient.role,
            title=body.title,
            description=body.description,
            type=body.type,
        )
    )
    logger.info("Notification sent (id=%s to=%s by=%s)", notification_id, recipient.id, actor.id)
    return NotificationResponse.of(store.get_notification(notification_id))


@router.patch("/notifications/{notification_id}", response_model=NotificationResponse)
def mark_notification(
    request: Request, notification_id: str, body: NotificationPatch, actor: Actor = Depends(get_actor)
) -> NotificationResponse:
    notification, target = _load(request, notification_id)
    enforce(request.app.state.policy.decide(actor, Entity.NOTIFICATION, Action.UPDATE, target))
    store: DocumentStore = request.app.state.document_store
    store.set_notification_read(notification.id, body.is_read)
    return NotificationResponse.of(store.get_notification(notification.id))


@router.delete("/notifications/{notification_id}")
def delete_notification(request: Request, notification_id: str, actor: Actor = Depends(get_actor)) -> dict:
    notification, target = _load(request, notification_id)
    enforce(request.app.state.policy.decide(actor, Entity.NOTIFICATION, Action.DELETE, target))
    request.app.state.document_store.delete_notification(notification.id)
    return {"success": True}
