"""
api/routes/users.py -- User management.

Routes:
  GET    /api/users          -- list users in scope (?role, ?agentId, ?limit, ?offset)
  POST   /api/users          -- create a user (agents: clients only, owned by the agent)
  GET    /api/users/{id}     -- read one user
  PUT    /api/users/{id}     -- update profile fields / password
  DELETE /api/users/{id}     -- delete; an agent's clients become orphaned

Every instance route loads the user first (404), then asks the access policy
(403, or 400 for self-deletion).
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.errors import AGENT_NOT_FOUND_MESSAGE, MISSING_DATA_MESSAGE, USER_NOT_FOUND_MESSAGE, ensure_unique
from api.models import UserCreate, UserListResponse, UserResponse, UserUpdate
from api.routes.activities import record_activity
from auth.dependencies import enforce, get_actor
from auth.models import Role, User
from auth.scope import Action, Actor, Entity, Target, assigned_agent_id, assigned_role
from auth.store import UserStore
from auth.tokens import hash_password
from documents.maintenance import delete_user

logger = logging.getLogger("agentpro.users")

MAX_PAGE_SIZE = 500

router = APIRouter()


def load_user(store: UserStore, user_id: str) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND_MESSAGE)
    return user


def check_password(request: Request, password: str) -> None:
    violations = request.app.state.basic_policy.validate(password)
    if violations:
        raise HTTPException(status_code=400, detail=violations[0])


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    role: Optional[Role] = None,
    agent_id: Optional[str] = Query(default=None, alias="agentId"),
    limit: int = Query(default=100, ge=1),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_actor),
) -> UserListResponse:
    """List users visible to the caller, newest first. limit is capped at 500.

    An agentId filter naming another agent is rejected for agents rather than
    narrowed to an empty page.
    """
    if actor.role == Role.AGENT and agent_id is not None and agent_id != actor.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    limit = min(limit, MAX_PAGE_SIZE)
    scope = request.app.state.policy.scope(actor, Entity.USER)
    users, total = request.app.state.user_store.list_users(scope, role=role, agent_id=agent_id, limit=limit, offset=offset)
    return UserListResponse(users=[UserResponse.of(u) for u in users], total=total, limit=limit, offset=offset)


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate, actor: Actor = Depends(get_actor)) -> UserResponse:
    """Create a user.

    Agents always create CLIENTs attached to themselves, whatever role or
    agentId the body carries. A password is required unless skipPassword is
    set (the client then sets one through the reset flow).
    """
    store: UserStore = request.app.state.user_store
    enforce(request.app.state.policy.decide(actor, Entity.USER, Action.CREATE, Target(role=body.role)))

    if not body.skip_password and not body.password:
        raise HTTPException(status_code=400, detail=MISSING_DATA_MESSAGE)
    if body.password:
        check_password(request, body.password)

    role = assigned_role(actor, body.role)
    agent_id = assigned_agent_id(actor, role, body.agent_id)
    if actor.role == Role.ADMIN and agent_id is not None:
        owner = store.get_by_id(agent_id)
        if owner is None or owner.role not in (Role.AGENT, Role.ADMIN):
            raise HTTPException(status_code=400, detail=AGENT_NOT_FOUND_MESSAGE)

    ensure_unique(store, email=body.email, phone=body.phone, id_number=body.id_number)
    user_id = store.create_user(
        User(
            email=body.email,
            name=body.name,
            role=role,
            password_hash=hash_password(body.password) if body.password else None,
            phone=body.phone,
            id_number=body.id_number,
            agent_id=agent_id,
            logo_url=body.logo_url if role == Role.AGENT else None,
        )
    )
    created = store.get_by_id(user_id)
    if role == Role.CLIENT:
        creator = store.get_by_id(actor.id)
        record_activity(
            request.app.state.document_store,
            creator,
            "NEW_CLIENT",
            f"לקוח חדש נוסף: {created.name}",
            target_id=created.id,
            target_name=created.name,
            target_type="USER",
            subject_user_id=created.id,
            metadata={"clientId": created.id},
        )
    logger.info("User created (id=%s role=%s by=%s)", user_id, role.value, actor.id)
    return UserResponse.of(created)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str, actor: Actor = Depends(get_actor)) -> UserResponse:
    user = load_user(request.app.state.user_store, user_id)
    enforce(request.app.state.policy.decide(actor, Entity.USER, Action.READ, Target.of_user(user)))
    return UserResponse.of(user)


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(request: Request, user_id: str, body: UserUpdate, actor: Actor = Depends(get_actor)) -> UserResponse:
    store: UserStore = request.app.state.user_store
    user = load_user(store, user_id)
    enforce(request.app.state.policy.decide(actor, Entity.USER, Action.UPDATE, Target.of_user(user)))

    fields = body.model_dump(exclude_unset=True, exclude={"password"})
    # name and email are required columns; null or blank means "leave unchanged".
    fields = {k: (v or None) for k, v in fields.items() if v or k not in ("name", "email")}
    ensure_unique(
        store,
        email=fields.get("email"),
        phone=fields.get("phone"),
        id_number=fields.get("id_number"),
        exclude_id=user.id,
    )
    if "logo_url" in fields and user.role != Role.AGENT:
        fields.pop("logo_url")
    if body.password:
        check_password(request, body.password)
        fields["password_hash"] = hash_password(body.password)
    store.update_user(user.id, **fields)
    return UserResponse.of(store.get_by_id(user.id))


@router.delete("/users/{user_id}")
def remove_user(request: Request, user_id: str, actor: Actor = Depends(get_actor)) -> dict:
    user = load_user(request.app.state.user_store, user_id)
    enforce(request.app.state.policy.decide(actor, Entity.USER, Action.DELETE, Target.of_user(user)))
    keys = delete_user(request.app.state.engine, user)
    request.app.state.storage.delete_many(keys)
    logger.info("User deleted (id=%s role=%s by=%s)", user.id, user.role.value, actor.id)
    return {"success": True}
