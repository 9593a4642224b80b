"""
api/routes/auth.py -- Session and password reset endpoints.

Routes:
  POST /api/auth/login            -- email/password login; sets JWT cookie
  POST /api/auth/logout           -- clears cookie
  GET  /api/auth/session          -- current user, or {"user": null}
  POST /api/auth/forgot-password  -- email a reset link (generic response)
  POST /api/auth/reset-password   -- set a new password with a reset token

Security:
  Login is on the strict auth rate-limit tier (10 per 15 minutes per client).
  authenticate_user() equalizes timing between unknown email and bad password.
  forgot-password answers identically whether or not the email exists.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    SessionResponse,
    UserResponse,
)
from api.routes.activities import record_activity
from auth.dependencies import try_get_current_user
from auth.reset import PasswordResetManager, ResetError
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, set_auth_cookie

logger = logging.getLogger("agentpro.auth")

BAD_CREDENTIALS_MESSAGE = "אימייל או סיסמה שגויים"

router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the JWT cookie.

    Wrong email and wrong password produce the same 401.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.info("Failed login attempt")
        resp = JSONResponse(status_code=401, content={"error": BAD_CREDENTIALS_MESSAGE})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    settings = request.app.state.settings
    token = create_access_token(user.id, user.email, user.role.value)
    record_activity(request.app.state.document_store, user, "LOGIN", f"{user.name} התחבר למערכת")
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(user=UserResponse.of(user), expires_in=settings.token_expire_seconds).model_dump(
            by_alias=True
        ),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    resp = JSONResponse(content={"success": True, "message": "Logged out"})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/session", response_model=SessionResponse)
def session(request: Request) -> SessionResponse:
    """Return the signed-in user. Never 401s: the front end polls this."""
    user = try_get_current_user(request)
    return SessionResponse(user=UserResponse.of(user) if user else None)


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    manager: PasswordResetManager = request.app.state.reset_manager
    try:
        message = manager.request_reset(body.email)
    except ResetError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return MessageResponse(message=message)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    manager: PasswordResetManager = request.app.state.reset_manager
    try:
        message = manager.consume_reset(body.token, body.password)
    except ResetError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return MessageResponse(message=message)
