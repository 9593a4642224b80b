"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
access decisions.

Two session transports are checked in priority order:
  1. JWT cookie ("access_token") -- set by POST /api/auth/login.
  2. Authorization: Bearer <token> header -- API clients and scripts.

Both converge on a User loaded fresh from the UserStore, so a deleted user's
still-valid JWT stops working immediately.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
get_actor() turns the user into an auth.scope.Actor (agents get their client
ids loaded once per request).
require_admin() raises HTTP 403 for anyone but an ADMIN.
enforce() converts a denied AccessDecision into the matching HTTPException.

Layer rule: no imports from api/ or documents/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Role, User
from auth.scope import SELF_DELETE, AccessDecision, Actor
from auth.tokens import decode_access_token

UNAUTHORIZED = "Unauthorized"
FORBIDDEN_MESSAGE = "Forbidden"
SELF_DELETE_MESSAGE = "Cannot delete yourself"


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via cookie or Bearer header.

    Returns the User on success, None on any failure. Never raises.
    """
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload:
        return None
    return request.app.state.user_store.get_by_id(payload["user_id"])


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail=UNAUTHORIZED)
    return user


def get_actor(request: Request, user: User = Depends(get_current_user)) -> Actor:
    """Return the Actor for the authenticated user."""
    client_ids: list[str] = []
    if user.role == Role.AGENT:
        client_ids = request.app.state.user_store.client_ids_of(user.id)
    return Actor.from_user(user, client_ids)


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the ADMIN role. Raises HTTP 401 if unauthenticated, 403 otherwise."""
    if user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    return user


def enforce(decision: AccessDecision) -> AccessDecision:
    """Raise for a denied decision; return it unchanged when allowed.

    Self-deletion is a 400. Every other denial is a generic 403 that does not
    say which rule failed.
    """
    if decision.allowed:
        return decision
    if decision.reason == SELF_DELETE:
        raise HTTPException(status_code=400, detail=SELF_DELETE_MESSAGE)
    raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
