"""
api/routes/orphaned_clients.py -- Clients whose agent was deleted (ADMIN only).

Routes:
  GET    /api/orphaned-clients   -- list, grouped by former agent name
  POST   /api/orphaned-clients   -- reassign {clientIds, newAgentId} to an AGENT
  DELETE /api/orphaned-clients   -- delete ?clientIds=a,b or ?formerAgentName=X
                                    (files, folders, notifications, then the user)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    OrphanAssignRequest,
    OrphanAssignResponse,
    OrphanDeleteResponse,
    OrphanedClientsResponse,
    UserResponse,
)
from api.routes.activities import record_activity
from auth.dependencies import require_admin
from auth.models import Role, User
from auth.store import UserStore
from documents.maintenance import delete_orphaned_clients

logger = logging.getLogger("agentpro.orphans")

INVALID_AGENT_MESSAGE = "Invalid agent"
SELECTION_REQUIRED_MESSAGE = "clientIds or formerAgentName is required"

router = APIRouter()


@router.get("/orphaned-clients", response_model=OrphanedClientsResponse)
def list_orphans(request: Request, admin: User = Depends(require_admin)) -> OrphanedClientsResponse:
    clients = [UserResponse.of(u) for u in request.app.state.user_store.list_orphaned_clients()]
    grouped: dict[str, list[UserResponse]] = {}
    for client in clients:
        grouped.setdefault(client.former_agent_name, []).append(client)
    return OrphanedClientsResponse(clients=clients, grouped_by_agent=grouped, total_count=len(clients))


@router.post("/orphaned-clients", response_model=OrphanAssignResponse)
def assign_orphans(
    request: Request, body: OrphanAssignRequest, admin: User = Depends(require_admin)
) -> OrphanAssignResponse:
    """Attach orphaned clients to an existing AGENT. Non-orphans in the list are skipped."""
    store: UserStore = request.app.state.user_store
    agent = store.get_by_id(body.new_agent_id)
    if agent is None or agent.role != Role.AGENT:
        raise HTTPException(status_code=400, detail=INVALID_AGENT_MESSAGE)
    assigned = store.assign_clients(body.client_ids, agent.id)
    record_activity(
        request.app.state.document_store,
        admin,
        "CLIENTS_REASSIGNED",
        f"{assigned} לקוחות שויכו לסוכן {agent.name}",
        target_id=agent.id,
        target_name=agent.name,
        target_type="USER",
        metadata={"clientIds": list(body.client_ids)},
    )
    logger.info("Reassigned %d orphaned clients to agent %s", assigned, agent.id)
    return OrphanAssignResponse(assigned_count=assigned, new_agent_name=agent.name)


@router.delete("/orphaned-clients", response_model=OrphanDeleteResponse)
def delete_orphans(
    request: Request,
    client_ids: Optional[str] = Query(default=None, alias="clientIds"),
    former_agent_name: Optional[str] = Query(default=None, alias="formerAgentName"),
    admin: User = Depends(require_admin),
) -> OrphanDeleteResponse:
    if client_ids:
        ids = [i.strip() for i in client_ids.split(",") if i.strip()]
    elif former_agent_name:
        ids = request.app.state.user_store.orphaned_ids_of(former_agent_name)
    else:
        raise HTTPException(status_code=400, detail=SELECTION_REQUIRED_MESSAGE)
    deleted, keys = delete_orphaned_clients(request.app.state.engine, ids)
    request.app.state.storage.delete_many(keys)
    logger.info("Deleted %d orphaned clients (by=%s)", deleted, admin.id)
    return OrphanDeleteResponse(deleted_count=deleted)
