"""
api/routes/folders.py -- Client folders.

Routes:
  GET    /api/folders          -- folders in scope (?userId, ?category)
  POST   /api/folders          -- create a folder for a client
  GET    /api/folders/{id}     -- read one folder
  PUT    /api/folders/{id}     -- rename / recategorize
  DELETE /api/folders/{id}     -- delete the folder and its files

A folder's access is decided by its owner: the owning user, and that user's
agent. Existence is checked before permission (404 before 403).
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.errors import MISSING_DATA_MESSAGE, USER_NOT_FOUND_MESSAGE
from api.models import FolderCreate, FolderResponse, FolderUpdate
from auth.dependencies import FORBIDDEN_MESSAGE, enforce, get_actor
from auth.models import Role, User
from auth.scope import Action, Actor, Entity, Target
from documents.models import Category, Folder
from documents.store import DocumentStore

logger = logging.getLogger("agentpro.folders")

FOLDER_NOT_FOUND_MESSAGE = "Folder not found"

router = APIRouter()


def load_folder(request: Request, folder_id: str) -> tuple[Folder, User]:
    """Return (folder, owner) or raise 404."""
    folder = request.app.state.document_store.get_folder(folder_id)
    if folder is None:
        raise HTTPException(status_code=404, detail=FOLDER_NOT_FOUND_MESSAGE)
    owner = request.app.state.user_store.get_by_id(folder.user_id)
    if owner is None:
        raise HTTPException(status_code=404, detail=FOLDER_NOT_FOUND_MESSAGE)
    return folder, owner


@router.get("/folders", response_model=list[FolderResponse])
def list_folders(
    request: Request,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    category: Optional[Category] = None,
    actor: Actor = Depends(get_actor),
) -> list[FolderResponse]:
    """Folders visible to the caller. A userId outside the caller's scope is a 403."""
    scope = request.app.state.policy.scope(actor, Entity.FOLDER)
    if user_id is not None and not scope.permits_user(user_id):
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    folders = request.app.state.document_store.list_folders(scope, user_id=user_id, category=category)
    return [FolderResponse.of(f) for f in folders]


@router.post("/folders", response_model=FolderResponse, status_code=201)
def create_folder(request: Request, body: FolderCreate, actor: Actor = Depends(get_actor)) -> FolderResponse:
    """Create a folder owned by body.userId.

    Agents must name one of their clients. Admins default to themselves.
    """
    if actor.role == Role.CLIENT:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    owner_id = body.user_id or (actor.id if actor.role == Role.ADMIN else None)
    if owner_id is None:
        raise HTTPException(status_code=400, detail=MISSING_DATA_MESSAGE)
    owner = request.app.state.user_store.get_by_id(owner_id)
    if owner is None:
        raise HTTPException(status_code=404, detail=USER_NOT_FOUND_MESSAGE)
    enforce(request.app.state.policy.decide(actor, Entity.FOLDER, Action.CREATE, Target.owned_by(owner)))

    store: DocumentStore = request.app.state.document_store
    folder_id = store.create_folder(Folder(name=body.name, category=body.category, user_id=owner.id))
    logger.info("Folder created (id=%s owner=%s by=%s)", folder_id, owner.id, actor.id)
    return FolderResponse.of(store.get_folder(folder_id))


@router.get("/folders/{folder_id}", response_model=FolderResponse)
def get_folder(request: Request, folder_id: str, actor: Actor = Depends(get_actor)) -> FolderResponse:
    folder, owner = load_folder(request, folder_id)
    enforce(request.app.state.policy.decide(actor, Entity.FOLDER, Action.READ, Target.owned_by(owner, folder.id)))
    return FolderResponse.of(folder)


@router.put("/folders/{folder_id}", response_model=FolderResponse)
def update_folder(
    request: Request, folder_id: str, body: FolderUpdate, actor: Actor = Depends(get_actor)
) -> FolderResponse:
    folder, owner = load_folder(request, folder_id)
    enforce(request.app.state.policy.decide(actor, Entity.FOLDER, Action.UPDATE, Target.owned_by(owner, folder.id)))
    store: DocumentStore = request.app.state.document_store
    store.update_folder(folder.id, **body.model_dump(exclude_none=True))
    return FolderResponse.of(store.get_folder(folder.id))


@router.delete("/folders/{folder_id}")
def delete_folder(request: Request, folder_id: str, actor: Actor = Depends(get_actor)) -> dict:
    folder, owner = load_folder(request, folder_id)
    enforce(request.app.state.policy.decide(actor, Entity.FOLDER, Action.DELETE, Target.owned_by(owner, folder.id)))
    keys = request.app.state.document_store.delete_folder(folder.id)
    request.app.state.storage.delete_many(keys)
    logger.info("Folder deleted (id=%s files=%d by=%s)", folder.id, len(keys), actor.id)
    return {"success": True}
