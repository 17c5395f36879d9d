#!/usr/bin/env python3
"""Manage admin accounts from a shell.

    python scripts/bootstrap_admin.py --email ops@example.com --name Ops --password ... --role owner
    python scripts/bootstrap_admin.py --email ops@example.com --deactivate
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from storefront.core.database import SessionLocal, engine  # noqa: E402
from storefront.services.admin_bootstrap import (  # noqa: E402
    ADMIN_ROLES,
    deactivate_admin_user,
    ensure_admin_tables,
    upsert_admin_user,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create, update or deactivate an admin account.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="", help="Display name (defaults to the email)")
    parser.add_argument("--password", help="Required for new accounts; a pbkdf2$/bcrypt hash is stored as-is")
    parser.add_argument("--role", default="admin", choices=ADMIN_ROLES)
    parser.add_argument("--deactivate", action="store_true", help="Disable the account instead of upserting it")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        ensure_admin_tables(engine)
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        if args.deactivate:
            admin = deactivate_admin_user(db, email=args.email)
            if admin is None:
                print(f"No admin with email {args.email}", file=sys.stderr)
                return 1
            print(f"Admin deactivated: email={admin.email}")
            return 0

        admin, created = upsert_admin_user(
            db,
            email=args.email,
            name=args.name,
            role=args.role,
            password=args.password,
        )
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        db.close()

    action = "created" if created else "updated"
    print(f"Admin {action}: email={admin.email} role={admin.role}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
