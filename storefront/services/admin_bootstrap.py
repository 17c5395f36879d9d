from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from storefront.models.admin_user import AdminUser
from storefront.services.passwords import hash_password, looks_hashed

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("owner", "admin", "support")
ADMIN_TABLES = ("admin_users", "admin_login_attempts", "admin_audit_log")


def missing_admin_tables(engine: Engine) -> list[str]:
    inspector = inspect(engine)
    return sorted(table for table in ADMIN_TABLES if not inspector.has_table(table))


def ensure_admin_tables(engine: Engine) -> None:
    missing = missing_admin_tables(engine)
    if missing:
        raise RuntimeError(
            f"Admin tables missing ({', '.join(missing)}). Run `alembic upgrade head` first."
        )


def _password_hash(password: str) -> str:
    # deploys may pass an already hashed value through the environment
    return password if looks_hashed(password) else hash_password(password)


def upsert_admin_user(
    db: Session,
    *,
    email: str,
    name: str,
    role: str,
    password: str | None,
) -> tuple[AdminUser, bool]:
    """Create the admin or refresh name, role and password of an existing one.

    Re-running reactivates a disabled account. A password is mandatory only
    when the account does not exist yet. Returns ``(admin, created)``.
    """
    email = email.strip().lower()
    role = role.strip().lower()
    if role not in ADMIN_ROLES:
        raise ValueError(f"Unknown role '{role}'. Expected one of: {', '.join(ADMIN_ROLES)}")

    admin = db.query(AdminUser).filter(AdminUser.email == email).first()
    created = admin is None
    if created:
        if not password:
            raise ValueError("A password is required to create a new admin.")
        admin = AdminUser(email=email)
        db.add(admin)

    admin.name = name.strip() or email
    admin.role = role
    admin.active = True
    if password:
        admin.password_hash = _password_hash(password)

    db.commit()
    db.refresh(admin)
    return admin, created


def bootstrap_initial_admin(
    db: Session,
    *,
    email: str,
    name: str,
    password: str,
) -> AdminUser | None:
    """Create the first owner account unless one already exists for ``email``."""
    email = email.strip().lower()
    existing = db.query(AdminUser).filter(AdminUser.email == email).first()
    if existing:
        logger.info("Initial admin already present id=%s", existing.id)
        return None

    admin, _ = upsert_admin_user(db, email=email, name=name, role="owner", password=password)
    logger.info("Initial admin created id=%s", admin.id)
    return admin


def deactivate_admin_user(db: Session, *, email: str) -> AdminUser | None:
    admin = db.query(AdminUser).filter(AdminUser.email == email.strip().lower()).first()
    if admin is None:
        return None
    admin.active = False
    db.commit()
    db.refresh(admin)
    return admin
