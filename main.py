#!/usr/bin/env python3
"""
AgentPro maintenance CLI.

Usage:
  python main.py seed-admin
  python main.py purge-tokens
  python main.py reset-system --confirm RESET_PRODUCTION_DATA
  python main.py serve --host 0.0.0.0 --port 8000

Configuration comes from the same environment / .env file as the API
(DATABASE_URL, SEED_ADMIN_PASSWORD, ...). See core/config.py.
"""

import argparse
import logging
import sys

from auth.passwords import basic_policy
from auth.reset import PasswordResetManager
from auth.store import UserStore
from core.config import get_settings
from core.db import create_schema, make_engine
from core.mailer import build_mailer
from documents.maintenance import RESET_CONFIRMATION, AdminPasswordError, admin_seed, reset_system
from documents.storage import LocalStorage


def _engine():
    engine = make_engine(get_settings().database_url)
    create_schema(engine)
    return engine


def cmd_seed_admin(args: argparse.Namespace) -> int:
    """Create or refresh the designated admin account."""
    settings = get_settings()
    try:
        seed = admin_seed(settings)
    except AdminPasswordError as e:
        print(f"  [!] {e}")
        return 1
    UserStore(_engine()).upsert_admin(seed.email, seed.name, seed.phone, seed.password_hash)
    print(f"  Admin account ready: {seed.email}")
    return 0


def cmd_purge_tokens(args: argparse.Namespace) -> int:
    """Delete expired or used password reset tokens."""
    settings = get_settings()
    manager = PasswordResetManager(
        UserStore(_engine()), build_mailer(settings), basic_policy(settings), base_url=settings.app_base_url
    )
    removed = manager.purge_stale()
    print(f"  Removed {removed} stale reset token(s).")
    return 0


def cmd_reset_system(args: argparse.Namespace) -> int:
    """Wipe all non-admin data. Same operation as POST /api/admin/reset-system."""
    if args.confirm != RESET_CONFIRMATION:
        print(f"  [!] Refusing to reset. Pass --confirm {RESET_CONFIRMATION}")
        return 2
    settings = get_settings()
    try:
        seed = admin_seed(settings)
    except AdminPasswordError as e:
        print(f"  [!] {e}")
        return 1
    result = reset_system(_engine(), seed)
    LocalStorage(settings.upload_dir).delete_many(result.pop("storage_keys"))
    deleted = ", ".join(f"{k}={v}" for k, v in result["deleted"].items())
    print(f"  Reset complete. Deleted: {deleted}")
    print(f"  Admin: {result['admin']['email']}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="agentpro",
        description="AgentPro maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  SEED_ADMIN_PASSWORD='...' python main.py seed-admin
  python main.py purge-tokens
  python main.py reset-system --confirm RESET_PRODUCTION_DATA
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed-admin", help="Create or refresh the designated admin account").set_defaults(
        func=cmd_seed_admin
    )
    sub.add_parser("purge-tokens", help="Delete expired or used password reset tokens").set_defaults(
        func=cmd_purge_tokens
    )

    reset = sub.add_parser("reset-system", help="Delete all agents, clients and documents")
    reset.add_argument("--confirm", metavar="PHRASE", default="", help=f"Must be {RESET_CONFIRMATION}")
    reset.set_defaults(func=cmd_reset_system)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
