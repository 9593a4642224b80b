"""
api/routes/admin.py -- System reset (ADMIN only).

Routes:
  GET  /api/admin/reset-system   -- preview: current counts and what a reset removes
  POST /api/admin/reset-system   -- wipe everything except admins; body must be
                                    {"confirm": "RESET_PRODUCTION_DATA"}

The wipe runs in one transaction (documents/maintenance.py). The designated
admin is re-upserted from SEED_ADMIN_PASSWORD, which must pass the strong
password policy; if it does not, nothing is deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ResetSystemRequest
from auth.dependencies import require_admin
from auth.models import User
from documents.maintenance import RESET_CONFIRMATION, AdminPasswordError, admin_seed, reset_system, system_stats

logger = logging.getLogger("agentpro.admin")

CONFIRMATION_MESSAGE = f'Confirmation required. Send {{ "confirm": "{RESET_CONFIRMATION}" }}'

router = APIRouter()


@router.get("/admin/reset-system")
def reset_preview(request: Request, admin: User = Depends(require_admin)) -> dict:
    stats = system_stats(request.app.state.engine)
    return {
        "currentStats": stats,
        "willDelete": {
            "agents": stats["users"]["agents"],
            "clients": stats["users"]["clients"],
            "folders": stats["folders"],
            "files": stats["files"],
            "notifications": stats["notifications"],
            "activities": stats["activities"],
            "logs": stats["logs"],
        },
        "willKeep": {"admins": stats["users"]["admins"]},
        "warning": "This operation cannot be undone. Make sure you have a backup!",
        "toConfirm": f'Send POST request with {{ "confirm": "{RESET_CONFIRMATION}" }}',
    }


@router.post("/admin/reset-system")
def reset(request: Request, body: ResetSystemRequest, admin: User = Depends(require_admin)) -> dict:
    if body.confirm != RESET_CONFIRMATION:
        raise HTTPException(status_code=400, detail=CONFIRMATION_MESSAGE)
    logger.warning("System reset initiated (by=%s)", admin.id)
    try:
        seed = admin_seed(request.app.state.settings)
    except AdminPasswordError:
        logger.exception("System reset aborted: admin password unavailable")
        raise HTTPException(status_code=500, detail="System reset failed")

    result = reset_system(request.app.state.engine, seed)
    request.app.state.storage.delete_many(result.pop("storage_keys"))
    return {
        "success": True,
        "message": "System reset completed successfully",
        "data": result,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
