"""
auth/passwords.py -- Password policy objects.

Two policies coexist on purpose and stay visible as separate objects:

  basic_policy(settings)  -- self-service reset, registration and user edits.
                             Only a minimum length (6 by default).
  strong_policy(settings) -- the seeded admin account. 12+ characters, all
                             four character classes, no common passwords, no
                             long runs of a repeated character.

The gap between them is an open product question (see DESIGN.md). Both
minimum lengths come from the Settings passed in, so the discrepancy can be
tuned per deployment without a code change.

Messages are Hebrew because they are shown to end users as-is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from core.config import Settings

_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_REPEAT_RE = re.compile(r"(.)\1{4,}")

_COMMON_PASSWORDS = frozenset(
    {
        "password123",
        "123456789012",
        "qwerty123456",
        "admin123456",
        "welcome123456",
        "password1234",
        "1234567890ab",
        "abcd1234!@#$",
    }
)


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int
    max_length: int = 128
    require_lowercase: bool = False
    require_uppercase: bool = False
    require_digit: bool = False
    require_special: bool = False
    reject_common: bool = False
    reject_repeat_runs: bool = False

    def validate(self, password: str) -> list[str]:
        """Return a list of user-facing violations. Empty means the password passes."""
        errors: list[str] = []
        if len(password) < self.min_length:
            errors.append(f"הסיסמה חייבת להכיל לפחות {self.min_length} תווים")
        if len(password) > self.max_length:
            errors.append(f"הסיסמה ארוכה מדי (מקסימום {self.max_length} תווים)")
        if self.require_lowercase and not re.search(r"[a-z]", password):
            errors.append("הסיסמה חייבת להכיל לפחות אות אחת קטנה באנגלית (a-z)")
        if self.require_uppercase and not re.search(r"[A-Z]", password):
            errors.append("הסיסמה חייבת להכיל לפחות אות אחת גדולה באנגלית (A-Z)")
        if self.require_digit and not re.search(r"[0-9]", password):
            errors.append("הסיסמה חייבת להכיל לפחות ספרה אחת (0-9)")
        if self.require_special and not _SPECIAL_RE.search(password):
            errors.append("הסיסמה חייבת להכיל לפחות תו מיוחד אחד (!@#$%^&* וכו')")
        if self.reject_common and password.lower() in _COMMON_PASSWORDS:
            errors.append("סיסמה זו נפוצה מדי, אנא בחר סיסמה ייחודית יותר")
        if self.reject_repeat_runs and _REPEAT_RE.search(password):
            errors.append("הסיסמה לא יכולה להכיל יותר מ-4 תווים זהים ברצף")
        return errors

    def is_valid(self, password: str) -> bool:
        return not self.validate(password)


def basic_policy(settings: Settings) -> PasswordPolicy:
    return PasswordPolicy(min_length=settings.basic_password_min_length)


def strong_policy(settings: Settings) -> PasswordPolicy:
    return PasswordPolicy(
        min_length=settings.strong_password_min_length,
        require_lowercase=True,
        require_uppercase=True,
        require_digit=True,
        require_special=True,
        reject_common=True,
        reject_repeat_runs=True,
    )
