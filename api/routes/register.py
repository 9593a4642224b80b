"""
api/routes/register.py -- Anonymous client self-registration.

Routes:
  GET  /api/register/agent/{agentId}   -- public agent card for a registration link
  POST /api/register                    -- create a CLIENT, optionally attached to an agent

The new account is always a CLIENT. agentId, when given, must name an AGENT
or ADMIN. Registration runs on the general API rate-limit tier.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from api.errors import AGENT_NOT_FOUND_MESSAGE, ensure_unique
from api.models import AgentInfoResponse, RegisterRequest, RegisterResponse
from api.routes.activities import record_activity
from api.routes.users import check_password
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("agentpro.register")

REGISTERED_MESSAGE = "המשתמש נוצר בהצלחה"

router = APIRouter()


def load_agent(store: UserStore, agent_id: str) -> User | None:
    """Return the user behind agent_id when it may own clients (AGENT or ADMIN)."""
    agent = store.get_by_id(agent_id)
    if agent is None or agent.role not in (Role.AGENT, Role.ADMIN):
        return None
    return agent


@router.get("/register/agent/{agent_id}", response_model=AgentInfoResponse)
def agent_info(request: Request, agent_id: str) -> AgentInfoResponse:
    agent = load_agent(request.app.state.user_store, agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=AGENT_NOT_FOUND_MESSAGE)
    return AgentInfoResponse(id=agent.id, name=agent.name, email=agent.email, logo_url=agent.logo_url)


@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    store: UserStore = request.app.state.user_store
    check_password(request, body.password)
    if body.agent_id and load_agent(store, body.agent_id) is None:
        raise HTTPException(status_code=400, detail=AGENT_NOT_FOUND_MESSAGE)
    ensure_unique(store, email=body.email, phone=body.phone, id_number=body.id_number)

    user_id = store.create_user(
        User(
            email=body.email,
            name=body.name,
            role=Role.CLIENT,
            password_hash=hash_password(body.password),
            phone=body.phone,
            id_number=body.id_number,
            agent_id=body.agent_id or None,
        )
    )
    user = store.get_by_id(user_id)
    record_activity(
        request.app.state.document_store,
        user,
        "USER_REGISTERED",
        f"משתמש חדש נרשם: {user.name}",
        target_id=user.id,
        target_name=user.name,
        target_type="USER",
        subject_user_id=user.id,
        metadata={"clientId": user.id, "agentId": user.agent_id},
    )
    logger.info("Client registered (id=%s agent=%s)", user.id, user.agent_id)
    return RegisterResponse(id=user.id, name=user.name, email=user.email, message=REGISTERED_MESSAGE)
