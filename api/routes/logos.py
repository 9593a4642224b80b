"""
api/routes/logos.py -- Agent logos.

Routes:
  POST /api/upload-logo      -- multipart (file, userId); sets the caller's logo,
                                or userId's when the caller is an ADMIN
  GET  /api/logos/{key}      -- logo bytes; public, the registration page shows them

Logos live in the same LocalStorage as documents. The stored logoUrl points at
GET /api/logos/{key}; replacing a logo removes the previous bytes.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile
from fastapi import File as FormFile
from fastapi.responses import FileResponse

from api.errors import USER_NOT_FOUND_MESSAGE
from api.models import LogoUploadResponse
from auth.dependencies import FORBIDDEN_MESSAGE, get_current_user
from auth.models import Role, User
from auth.store import UserStore
from documents.storage import LocalStorage, is_logo

logger = logging.getLogger("agentpro.logos")

LOGO_PATH = "/api/logos/"
NO_FILE_MESSAGE = "No file provided"
LOGO_TYPE_MESSAGE = "Only PNG, JPG, GIF, and WebP images are allowed"
LOGO_NOT_FOUND_MESSAGE = "Logo not found"

router = APIRouter()


def _stored_key(logo_url: str | None) -> str | None:
    if logo_url and logo_url.startswith(LOGO_PATH):
        return logo_url[len(LOGO_PATH):]
    return None


@router.post("/upload-logo", response_model=LogoUploadResponse)
def upload_logo(
    request: Request,
    file: Optional[UploadFile] = FormFile(default=None),
    user_id: Optional[str] = Form(default=None, alias="userId"),
    user: User = Depends(get_current_user),
) -> LogoUploadResponse:
    store: UserStore = request.app.state.user_store
    target = user
    if user_id and user.role == Role.ADMIN:
        target = store.get_by_id(user_id)
        if target is None:
            raise HTTPException(status_code=404, detail=USER_NOT_FOUND_MESSAGE)
    if target.role == Role.CLIENT:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)

    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail=NO_FILE_MESSAGE)
    max_bytes = request.app.state.settings.logo_max_bytes
    data = file.file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"הקובץ גדול מדי. הגודל המקסימלי הוא {max_bytes // (1024 * 1024)}MB",
        )
    if not is_logo(file.content_type):
        raise HTTPException(status_code=400, detail=LOGO_TYPE_MESSAGE)

    storage: LocalStorage = request.app.state.storage
    key = storage.save(data, file.content_type)
    url = LOGO_PATH + key
    try:
        store.update_user(target.id, logo_url=url)
    except Exception:
        storage.delete(key)
        raise
    previous = _stored_key(target.logo_url)
    if previous:
        storage.delete(previous)
    logger.info("Logo updated (user_id=%s by=%s)", target.id, user.id)
    return LogoUploadResponse(url=url)


@router.get("/logos/{key}")
def get_logo(request: Request, key: str) -> FileResponse:
    storage: LocalStorage = request.app.state.storage
    try:
        found = storage.exists(key)
    except ValueError:
        found = False
    if not found:
        raise HTTPException(status_code=404, detail=LOGO_NOT_FOUND_MESSAGE)
    return FileResponse(storage.path(key))
