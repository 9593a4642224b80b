"""
api/errors.py -- Shared error messages and conflict detection.

Uniqueness is checked before each write so the response can name the field.
The UNIQUE constraints still catch races; api/main.py maps the resulting
IntegrityError back to the same messages with conflict_field().
"""

from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from auth.store import UserStore

INTERNAL_ERROR_MESSAGE = "אירעה שגיאה, אנא נסה שוב מאוחר יותר"
MISSING_DATA_MESSAGE = "נתונים חסרים"
USER_NOT_FOUND_MESSAGE = "משתמש לא נמצא"
AGENT_NOT_FOUND_MESSAGE = "הסוכן לא נמצא"

CONFLICT_MESSAGES = {
    "email": "אימייל זה כבר קיים במערכת",
    "id_number": "תעודת זהות זו כבר קיימת במערכת",
    "phone": "מספר טלפון זה כבר קיים במערכת",
}


def ensure_unique(
    store: UserStore,
    email: str | None = None,
    phone: str | None = None,
    id_number: str | None = None,
    exclude_id: str | None = None,
) -> None:
    """Raise HTTP 400 naming the first field already used by another user."""
    field = store.find_conflict(email=email, phone=phone, id_number=id_number, exclude_id=exclude_id)
    if field is not None:
        raise HTTPException(status_code=400, detail=CONFLICT_MESSAGES[field])


def conflict_field(exc: IntegrityError) -> str | None:
    """Best-effort name of the column behind a UNIQUE violation.

    SQLite reports "UNIQUE constraint failed: users.email"; PostgreSQL names
    the constraint or key, e.g. 'Key (email)=(...) already exists'.
    """
    text = str(exc.orig).lower()
    for field in ("id_number", "email", "phone"):
        if f"users.{field}" in text or f"({field})" in text or f"_{field}_" in text:
            return field
    return None
