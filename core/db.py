"""
core/db.py -- Shared SQLAlchemy Core plumbing for every store.

All tables live on one MetaData so users, folders and files share a database.
Cross-entity operations (orphaning clients, cascading a client's folders,
wiping the system) must run inside one transaction, which is impossible when
each store owns its own database file.

Stores import `metadata` to declare their tables and call `make_engine()` with
the configured URL. `create_schema()` is called once the tables are declared.

Layer rule: no imports from api/, auth/, or documents/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement per connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, so
    they are set on every connect event.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def make_engine(db_url: str) -> Engine:
    """Create an Engine for db_url, applying SQLite specifics when needed.

    check_same_thread=False is required because FastAPI runs sync route
    handlers in a thread pool that shares the pooled connections.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_pragmas)
    return engine


def create_schema(engine: Engine) -> None:
    """Create every table registered on the shared metadata (idempotent)."""
    metadata.create_all(engine)


def new_id() -> str:
    """Return a new opaque primary key (32 hex chars)."""
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")
