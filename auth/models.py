"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in documents/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/ or documents/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles, most privileged first."""

    ADMIN = "ADMIN"
    AGENT = "AGENT"
    CLIENT = "CLIENT"


@dataclass
class User:
    """An account in AgentPro.

    agent_id is only meaningful for CLIENT users: it points at the AGENT (or
    ADMIN) who owns the client. When that agent is deleted the client becomes
    "orphaned": agent_id is cleared and former_agent_name keeps the deleted
    agent's display name until an admin reassigns the client.

    password_hash is None for accounts created without a password (the agent
    sends the client a reset link instead).
    """

    email: str
    name: str
    role: Role
    id: str | None = None
    password_hash: str | None = None
    phone: str | None = None
    id_number: str | None = None
    agent_id: str | None = None
    former_agent_name: str | None = None
    logo_url: str | None = None  # agents only
    created_at: str | None = None

    @property
    def is_orphaned(self) -> bool:
        return self.role == Role.CLIENT and self.agent_id is None and self.former_agent_name is not None


@dataclass
class PasswordResetToken:
    """A single password-reset request.

    token is 32 random bytes as 64 hex characters. expires_at is an ISO 8601
    UTC timestamp. used flips False -> True exactly once; the store performs
    that write as a conditional update so two concurrent consumers cannot
    both succeed.
    """

    token: str
    email: str
    expires_at: str
    used: bool = False
    id: str | None = None
    created_at: str | None = None
