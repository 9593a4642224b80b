"""
api/routes/files.py -- Uploaded documents.

Routes:
  GET    /api/files                 -- files in scope (?limit, ?userId, ?folderId)
  POST   /api/files                 -- multipart upload (file, folderId, notes)
  GET    /api/files/{id}            -- file metadata
  GET    /api/files/{id}/download   -- file bytes
  PUT    /api/files/{id}            -- update notes
  DELETE /api/files/{id}            -- delete metadata and bytes

Access follows the owning folder: File -> Folder -> owner -> owner's agent.
Uploads are limited to PDF/PNG/JPEG and go through the standalone upload
rate limiter.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, UploadFile
from fastapi import File as FormFile
from fastapi.responses import FileResponse

from api.limiter import rate_limit_dependency
from api.models import FileInfo, FileUpdate
from api.routes.activities import record_activity
from api.routes.folders import load_folder
from auth.dependencies import FORBIDDEN_MESSAGE, enforce, get_actor
from auth.models import Role, User
from auth.scope import Action, Actor, Entity, Target
from documents.models import File, Folder
from documents.storage import LocalStorage, file_type_for, is_allowed
from documents.store import DocumentStore

logger = logging.getLogger("agentpro.files")

FILE_NOT_FOUND_MESSAGE = "File not found"
UPLOAD_REQUIRED_MESSAGE = "File and folderId are required"
UPLOAD_TYPE_MESSAGE = "Only PDF, PNG, and JPG files are allowed"
MAX_PAGE_SIZE = 500

router = APIRouter()


def load_file(request: Request, file_id: str) -> tuple[File, Folder, User]:
    """Return (file, folder, folder owner) or raise 404."""
    file = request.app.state.document_store.get_file(file_id)
    if file is None:
        raise HTTPException(status_code=404, detail=FILE_NOT_FOUND_MESSAGE)
    folder, owner = load_folder(request, file.folder_id)
    return file, folder, owner


def _decide(request: Request, actor: Actor, action: Action, file: File, owner: User) -> None:
    enforce(request.app.state.policy.decide(actor, Entity.FILE, action, Target.owned_by(owner, file.id)))


@router.get("/files", response_model=list[FileInfo])
def list_files(
    request: Request,
    limit: int = Query(default=10, ge=1),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    folder_id: Optional[str] = Query(default=None, alias="folderId"),
    actor: Actor = Depends(get_actor),
) -> list[FileInfo]:
    """Most recent files visible to the caller.

    userId outside the caller's scope is a 403; so is a folderId the caller
    may not read.
    """
    scope = request.app.state.policy.scope(actor, Entity.FILE)
    if user_id is not None and not scope.permits_user(user_id):
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    if folder_id is not None:
        folder, owner = load_folder(request, folder_id)
        enforce(request.app.state.policy.decide(actor, Entity.FOLDER, Action.READ, Target.owned_by(owner, folder.id)))
    files = request.app.state.document_store.list_files(
        scope, user_id=user_id, folder_id=folder_id, limit=min(limit, MAX_PAGE_SIZE)
    )
    return [FileInfo.of(f) for f in files]


@router.post(
    "/files",
    response_model=FileInfo,
    status_code=201,
    dependencies=[Depends(rate_limit_dependency("upload_limiter", "upload_policy"))],
)
def upload_file(
    request: Request,
    file: Optional[UploadFile] = FormFile(default=None),
    folder_id: Optional[str] = Form(default=None, alias="folderId"),
    notes: Optional[str] = Form(default=None),
    actor: Actor = Depends(get_actor),
) -> FileInfo:
    if actor.role == Role.CLIENT:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)
    if file is None or not file.filename or not folder_id:
        raise HTTPException(status_code=400, detail=UPLOAD_REQUIRED_MESSAGE)
    if not is_allowed(file.content_type):
        raise HTTPException(status_code=400, detail=UPLOAD_TYPE_MESSAGE)

    folder, owner = load_folder(request, folder_id)
    enforce(request.app.state.policy.decide(actor, Entity.FILE, Action.CREATE, Target.owned_by(owner)))

    storage: LocalStorage = request.app.state.storage
    store: DocumentStore = request.app.state.document_store
    data = file.file.read()
    content_type = file.content_type.lower()
    key = storage.save(data, content_type)
    try:
        file_id = store.create_file(
            File(
                folder_id=folder.id,
                file_name=file.filename,
                file_type=file_type_for(file.filename, content_type),
                storage_key=key,
                content_type=content_type,
                size=len(data),
                notes=notes or None,
            )
        )
    except Exception:
        # No row points at the bytes; do not leave them on disk.
        storage.delete(key)
        raise
    record_activity(
        store,
        request.app.state.user_store.get_by_id(actor.id),
        "FILE_UPLOADED",
        f"קובץ הועלה: {file.filename} לתיקיית {folder.name}",
        target_id=file_id,
        target_name=file.filename,
        target_type="FILE",
        subject_user_id=owner.id,
        metadata={"clientId": owner.id, "folderId": folder.id},
    )
    logger.info("File uploaded (id=%s folder=%s size=%d by=%s)", file_id, folder.id, len(data), actor.id)
    return FileInfo.of(store.get_file(file_id))


@router.get("/files/{file_id}", response_model=FileInfo)
def get_file(request: Request, file_id: str, actor: Actor = Depends(get_actor)) -> FileInfo:
    file, _folder, owner = load_file(request, file_id)
    _decide(request, actor, Action.READ, file, owner)
    return FileInfo.of(file)


@router.get("/files/{file_id}/download")
def download_file(request: Request, file_id: str, actor: Actor = Depends(get_actor)) -> FileResponse:
    file, _folder, owner = load_file(request, file_id)
    _decide(request, actor, Action.READ, file, owner)
    storage: LocalStorage = request.app.state.storage
    if not storage.exists(file.storage_key):
        logger.warning("File bytes missing (id=%s key=%s)", file.id, file.storage_key)
        raise HTTPException(status_code=404, detail=FILE_NOT_FOUND_MESSAGE)
    return FileResponse(storage.path(file.storage_key), media_type=file.content_type, filename=file.file_name)


@router.put("/files/{file_id}", response_model=FileInfo)
def update_file(request: Request, file_id: str, body: FileUpdate, actor: Actor = Depends(get_actor)) -> FileInfo:
    file, _folder, owner = load_file(request, file_id)
    _decide(request, actor, Action.UPDATE, file, owner)
    store: DocumentStore = request.app.state.document_store
    store.update_file_notes(file.id, body.notes or None)
    return FileInfo.of(store.get_file(file.id))


@router.delete("/files/{file_id}")
def delete_file(request: Request, file_id: str, actor: Actor = Depends(get_actor)) -> dict:
    file, _folder, owner = load_file(request, file_id)
    _decide(request, actor, Action.DELETE, file, owner)
    request.app.state.document_store.delete_file(file.id)
    request.app.state.storage.delete(file.storage_key)
    logger.info("File deleted (id=%s by=%s)", file.id, actor.id)
    return {"success": True}
