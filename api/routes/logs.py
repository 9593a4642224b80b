"""
api/routes/logs.py -- Client-side error reports.

Routes:
  POST /api/logs   -- store a report from the web client (standalone logs limiter)
  GET  /api/logs   -- list reports (?level, ?limit, ?offset); ADMIN only

POST is unauthenticated, so it only accepts requests whose Origin or Referer
is the app itself.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.limiter import rate_limit_dependency
from api.models import LogCreate, LogListResponse, LogResponse
from auth.dependencies import require_admin
from auth.models import User
from documents.models import LogEntry, LogLevel

logger = logging.getLogger("agentpro.logs")

router = APIRouter()


def _same_origin(request: Request) -> bool:
    settings = request.app.state.settings
    host = request.headers.get("host", "")
    allowed = [f"https://{host}", f"http://{host}", settings.app_base_url, *settings.cors_origins]
    for header in ("origin", "referer"):
        value = request.headers.get(header)
        if value and any(value.startswith(a) for a in allowed if a):
            return True
    return False


@router.post(
    "/logs",
    response_model=LogResponse,
    status_code=201,
    dependencies=[Depends(rate_limit_dependency("logs_limiter", "logs_policy"))],
)
def create_log(request: Request, body: LogCreate) -> LogResponse:
    if not _same_origin(request):
        raise HTTPException(status_code=403, detail="Invalid origin")
    context = {
        "componentName": body.component_name,
        "userId": body.user_id,
        "deviceInfo": body.device_info,
        "url": body.url,
        "stack": body.stack,
        **(body.metadata or {}),
    }
    entry = LogEntry(
        message=body.message,
        level=body.error_level or LogLevel.INFO,
        metadata=json.dumps(context, ensure_ascii=False),
    )
    store = request.app.state.document_store
    log_id = store.add_log(entry)
    if entry.level in (LogLevel.ERROR, LogLevel.CRITICAL):
        logger.warning("Client reported %s: %s", entry.level.value, body.message[:200])
    return LogResponse.of(store.get_log(log_id))


@router.get("/logs", response_model=LogListResponse)
def list_logs(
    request: Request,
    level: Optional[LogLevel] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(require_admin),
) -> LogListResponse:
    entries, total = request.app.state.document_store.list_logs(level=level, limit=limit, offset=offset)
    return LogListResponse(logs=[LogResponse.of(e) for e in entries], total=total)
