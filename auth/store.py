"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper (same as documents/store.py).
UserStore is the repository; _row_to_user / _row_to_reset_token are the
mappers. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  phone uniqueness is enforced in code rather than SQL: the column is
  optional and many legacy rows share an empty value.

  consume_reset_token() marks a token used with a conditional UPDATE
  (WHERE used = 0) inside the same transaction as the password write. Two
  concurrent consumers cannot both see rowcount 1.

Layer rule: no imports from api/ or documents/.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import Boolean, Column, ForeignKey, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import PasswordResetToken, Role, User
from auth.scope import ScopeFilter
from core.db import metadata, new_id, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(100), nullable=False),
    Column("password_hash", Text),  # NULL until the user sets a password
    Column("role", String(10), nullable=False, server_default=Role.CLIENT.value),
    Column("phone", String(20)),
    Column("id_number", String(9), unique=True),
    Column("agent_id", String(32), ForeignKey("users.id")),
    Column("former_agent_name", String(100)),
    Column("logo_url", Text),
    Column("created_at", String(32), nullable=False),
)

reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),  # ISO 8601 UTC
    Column("used", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Shared helpers (also used inside maintenance transactions)
# ---------------------------------------------------------------------------


def upsert_admin(conn: Connection, email: str, name: str, phone: str | None, password_hash: str) -> str:
    """Create or refresh the designated admin account on conn. Returns its id.

    The caller owns the transaction so reset-system can run this as the last
    step of its all-or-nothing wipe.
    """
    row = conn.execute(select(users.c.id).where(users.c.email == email)).fetchone()
    values = {"name": name, "phone": phone, "password_hash": password_hash, "role": Role.ADMIN.value}
    if row is not None:
        conn.execute(users.update().where(users.c.id == row.id).values(**values))
        return row.id
    user_id = new_id()
    conn.execute(users.insert().values(id=user_id, email=email, created_at=now_iso(), **values))
    return user_id


def scope_clause(scope: ScopeFilter, column):
    """Return a WHERE clause restricting column to scope.user_ids, or None."""
    if scope.user_ids is None:
        return None
    return column.in_(sorted(scope.user_ids))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and PasswordResetToken entities.

    Usage:
        store = UserStore(engine)
        user_id = store.create_user(User(email="a@b.c", name="A", role=Role.AGENT))
        user = store.get_by_email("a@b.c")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError on a duplicate email or id number.
        """
        user_id = new_id()
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email,
                    name=user.name,
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    phone=user.phone or None,
                    id_number=user.id_number or None,
                    agent_id=user.agent_id,
                    former_agent_name=user.former_agent_name,
                    logo_url=user.logo_url,
                    created_at=now_iso(),
                )
            )
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_conflict(
        self,
        email: str | None = None,
        phone: str | None = None,
        id_number: str | None = None,
        exclude_id: str | None = None,
    ) -> str | None:
        """Return the first field ("email", "id_number", "phone") already taken by another user.

        Checked before writes so the API can name the conflicting field. The
        UNIQUE constraints still guard against races; see api/main.py for the
        IntegrityError fallback.
        """
        checks = (("email", email), ("id_number", id_number), ("phone", phone))
        with self.engine.connect() as conn:
            for column_name, value in checks:
                if not value:
                    continue
                query = select(users.c.id).where(users.c[column_name] == value)
                if exclude_id is not None:
                    query = query.where(users.c.id != exclude_id)
                if conn.execute(query.limit(1)).fetchone() is not None:
                    return column_name
        return None

    def list_users(
        self,
        scope: ScopeFilter,
        role: Role | None = None,
        agent_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
        created_since: str | None = None,
    ) -> tuple[list[User], int]:
        """Return (page, total) of users visible in scope, newest first.

        created_since is an ISO 8601 timestamp; older users are left out.
        """
        conditions = []
        clause = scope_clause(scope, users.c.id)
        if clause is not None:
            conditions.append(clause)
        if role is not None:
            conditions.append(users.c.role == Role(role).value)
        if agent_id is not None:
            conditions.append(users.c.agent_id == agent_id)
        if created_since is not None:
            conditions.append(users.c.created_at >= created_since)
        query = users.select().where(*conditions).order_by(users.c.created_at.desc()).limit(limit).offset(offset)
        count = select(func.count()).select_from(users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def client_ids_of(self, agent_id: str) -> list[str]:
        """Return the ids of every client owned by agent_id."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(users.c.id).where(users.c.agent_id == agent_id)).fetchall()
        return [r.id for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email, name, phone, id_number, password_hash,
        logo_url. Returns True if a row was updated.
        """
        if not fields:
            return False
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def count_by_role(self) -> dict[str, int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(users.c.role, func.count()).group_by(users.c.role)).fetchall()
        counts = {role.value: 0 for role in Role}
        counts.update({r[0]: r[1] for r in rows})
        return counts

    def has_admin(self) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.role == Role.ADMIN.value).limit(1)).fetchone()
        return row is not None

    def upsert_admin(self, email: str, name: str, phone: str | None, password_hash: str) -> str:
        with self.engine.begin() as conn:
            return upsert_admin(conn, email, name, phone, password_hash)

    # ------------------------------------------------------------------
    # Orphaned clients
    # ------------------------------------------------------------------

    def list_orphaned_clients(self) -> list[User]:
        """Clients whose agent was deleted, ordered by former agent then newest."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                users.select()
                .where(
                    (users.c.role == Role.CLIENT.value)
                    & users.c.agent_id.is_(None)
                    & users.c.former_agent_name.is_not(None)
                )
                .order_by(users.c.former_agent_name.asc(), users.c.created_at.desc())
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def orphaned_ids_of(self, former_agent_name: str) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(users.c.id).where(
                    (users.c.role == Role.CLIENT.value)
                    & users.c.agent_id.is_(None)
                    & (users.c.former_agent_name == former_agent_name)
                )
            ).fetchall()
        return [r.id for r in rows]

    def assign_clients(self, client_ids: Iterable[str], agent_id: str) -> int:
        """Attach unowned clients to agent_id and clear former_agent_name.

        Only rows that are still unowned CLIENTs are touched. Returns the
        number of clients reassigned.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                users.update()
                .where(
                    users.c.id.in_(list(client_ids))
                    & (users.c.role == Role.CLIENT.value)
                    & users.c.agent_id.is_(None)
                )
                .values(agent_id=agent_id, former_agent_name=None)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: PasswordResetToken) -> None:
        """Delete every token for token.email, then insert token.

        Both statements share one transaction so at most one token per email
        exists once this returns.
        """
        with self.engine.begin() as conn:
            conn.execute(reset_tokens.delete().where(reset_tokens.c.email == token.email))
            conn.execute(
                reset_tokens.insert().values(
                    id=new_id(),
                    email=token.email,
                    token=token.token,
                    expires_at=token.expires_at,
                    used=token.used,
                    created_at=now_iso(),
                )
            )

    def get_reset_token(self, token: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(reset_tokens.select().where(reset_tokens.c.token == token)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def reset_tokens_for(self, email: str) -> list[PasswordResetToken]:
        with self.engine.connect() as conn:
            rows = conn.execute(reset_tokens.select().where(reset_tokens.c.email == email)).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def consume_reset_token(self, token: str, email: str, password_hash: str) -> bool:
        """Claim token and set the user's password in one transaction.

        Returns False (and writes nothing) when the token was already claimed,
        including by a concurrent caller that got there first.
        """
        with self.engine.begin() as conn:
            claimed = conn.execute(
                reset_tokens.update()
                .where((reset_tokens.c.token == token) & (reset_tokens.c.used == False))  # noqa: E712
                .values(used=True)
            )
            if claimed.rowcount != 1:
                return False
            conn.execute(users.update().where(users.c.email == email).values(password_hash=password_hash))
        return True

    def purge_reset_tokens(self, now: str) -> int:
        """Delete tokens that are used or expired as of now (ISO 8601). Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                reset_tokens.delete().where((reset_tokens.c.used == True) | (reset_tokens.c.expires_at < now))  # noqa: E712
            )
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        role=Role(row.role),
        password_hash=row.password_hash,
        phone=row.phone,
        id_number=row.id_number,
        agent_id=row.agent_id,
        former_agent_name=row.former_agent_name,
        logo_url=row.logo_url,
        created_at=row.created_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        email=row.email,
        token=row.token,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )
