"""
auth/reset.py -- Password reset token manager.

Two operations back the forgot/reset-password endpoints:

  request_reset(email)            -- issue a token and email a reset link.
                                     Always returns the same generic message,
                                     whether or not the email is registered.
  consume_reset(token, password)  -- validate the token, set the password,
                                     mark the token used.

Token lifecycle: ISSUED -> USED (successful consume), ISSUED -> EXPIRED (now
past expires_at, derived at read time), ISSUED -> SUPERSEDED (row deleted by a
newer request for the same email).

Validation failures raise a ResetError subclass carrying the HTTP status and
the user-facing (Hebrew) message. Routes translate them directly.

Layer rule: no imports from api/ or documents/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from auth.models import PasswordResetToken
from auth.passwords import PasswordPolicy
from auth.store import UserStore
from auth.tokens import generate_reset_token, hash_password
from core.mailer import Mailer

logger = logging.getLogger("agentpro.reset")

GENERIC_REQUEST_MESSAGE = "אם המייל קיים במערכת, נשלח אליו קישור לאיפוס סיסמה"
SUCCESS_MESSAGE = "הסיסמה שונתה בהצלחה!"

RESET_SUBJECT = "איפוס סיסמה - Insurance App"
SUCCESS_SUBJECT = "הסיסמה שונתה בהצלחה - Insurance App"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ResetError(Exception):
    """Base for reset-flow failures. status_code and message go to the client."""

    status_code = 400
    message = "אירעה שגיאה, אנא נסה שוב מאוחר יותר"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingDataError(ResetError):
    message = "נתונים חסרים"


class PasswordPolicyError(ResetError):
    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(violations[0])


class InvalidTokenError(ResetError):
    message = "הקישור לא תקף"


class ExpiredTokenError(ResetError):
    message = "הקישור פג תוקף, אנא בקש קישור חדש"


class UsedTokenError(ResetError):
    message = "הקישור כבר שומש"


class UserGoneError(ResetError):
    status_code = 404
    message = "משתמש לא נמצא"


class MissingEmailError(ResetError):
    message = "אנא הזן כתובת מייל"


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordResetManager:
    """Issues and consumes single-use, expiring password reset tokens.

    Args:
        store:     UserStore holding users and reset tokens.
        mailer:    Transport for the reset link and confirmation emails.
        policy:    Password policy applied to the new password (the basic
                   policy in the app).
        base_url:  Public origin of the front end; links point at
                   {base_url}/reset-password?token=...
        ttl_seconds: Token lifetime.
        clock:     Returns the current UTC datetime. Injected in tests.
    """

    def __init__(
        self,
        store: UserStore,
        mailer: Mailer,
        policy: PasswordPolicy,
        base_url: str,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.ttl_seconds = ttl_seconds
        self.policy = policy
        self.clock = clock

    def reset_url(self, token: str) -> str:
        return f"{self.base_url}/reset-password?{urlencode({'token': token})}"

    def request_reset(self, email: str | None) -> str:
        """Issue a reset token for email and send the link.

        Returns the generic success message. Unknown emails get the same
        message, with no token written and no email sent.
        """
        if not email or not email.strip():
            raise MissingEmailError()
        email = email.strip()
        user = self.store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return GENERIC_REQUEST_MESSAGE

        token = PasswordResetToken(
            token=generate_reset_token(),
            email=user.email,
            expires_at=(self.clock() + timedelta(seconds=self.ttl_seconds)).isoformat(timespec="microseconds"),
        )
        self.store.replace_reset_token(token)
        self.mailer.send(
            user.email,
            RESET_SUBJECT,
            "reset_password.html",
            name=user.name,
            reset_url=self.reset_url(token.token),
            ttl_minutes=self.ttl_seconds // 60,
        )
        logger.info("Password reset token issued (user_id=%s)", user.id)
        return GENERIC_REQUEST_MESSAGE

    def consume_reset(self, token: str | None, password: str | None) -> str:
        """Set a new password using token. Returns the success message.

        Checks run in a fixed order: missing input, password policy, unknown
        token, expiry, prior use, missing user. Expiry is checked before use,
        so an expired token reports "expired" whatever its used flag.

        Raises:
            ResetError subclass describing the first failed check.
        """
        if not token or not password:
            raise MissingDataError()
        violations = self.policy.validate(password)
        if violations:
            raise PasswordPolicyError(violations)

        record = self.store.get_reset_token(token)
        if record is None:
            raise InvalidTokenError()
        if self.clock() > datetime.fromisoformat(record.expires_at):
            raise ExpiredTokenError()
        if record.used:
            raise UsedTokenError()
        user = self.store.get_by_email(record.email)
        if user is None:
            raise UserGoneError()

        if not self.store.consume_reset_token(token, user.email, hash_password(password)):
            # Lost the race against a concurrent consumer.
            raise UsedTokenError()

        self.mailer.send(user.email, SUCCESS_SUBJECT, "password_reset_success.html", name=user.name)
        logger.info("Password reset completed (user_id=%s)", user.id)
        return SUCCESS_MESSAGE

    def purge_stale(self) -> int:
        """Delete expired or used tokens. Returns the number removed."""
        removed = self.store.purge_reset_tokens(self.clock().isoformat(timespec="microseconds"))
        if removed:
            logger.info("Purged %d stale reset tokens", removed)
        return removed
