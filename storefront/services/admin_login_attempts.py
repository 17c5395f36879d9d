from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.orm import Session

from storefront.core.clock import utcnow
from storefront.core.config import (
    ADMIN_LOGIN_LOCK_MINUTES,
    ADMIN_LOGIN_MAX_ATTEMPTS,
    ADMIN_LOGIN_WINDOW_MINUTES,
)
from storefront.models.admin_login_attempt import AdminLoginAttempt


class LoginLock(NamedTuple):
    locked: bool
    until: datetime | None


def _attempt_for(db: Session, email: str) -> AdminLoginAttempt | None:
    return db.query(AdminLoginAttempt).filter(AdminLoginAttempt.email == email).first()


def check_login_lock(db: Session, email: str, now: datetime | None = None) -> LoginLock:
    now = now or utcnow()
    attempt = _attempt_for(db, email)
    if attempt is None or attempt.locked_until is None or attempt.locked_until <= now:
        return LoginLock(False, None)
    return LoginLock(True, attempt.locked_until)


def register_failed_login(
    db: Session,
    email: str,
    now: datetime | None = None,
) -> tuple[AdminLoginAttempt, bool]:
    """Count a failed login for ``email``; returns the row and whether it just locked.

    Failures older than the counting window, or from before an expired lock,
    start a fresh count.
    """
    now = now or utcnow()
    window = timedelta(minutes=ADMIN_LOGIN_WINDOW_MINUTES)

    attempt = _attempt_for(db, email)
    if attempt is None:
        attempt = AdminLoginAttempt(email=email, failed_count=0)
        db.add(attempt)

    lock_expired = attempt.locked_until is not None and attempt.locked_until <= now
    window_expired = attempt.first_failed_at is None or now - attempt.first_failed_at > window
    if lock_expired or window_expired:
        attempt.failed_count = 0
        attempt.first_failed_at = now
        attempt.locked_until = None

    attempt.failed_count = (attempt.failed_count or 0) + 1
    attempt.last_failed_at = now

    just_locked = attempt.failed_count >= ADMIN_LOGIN_MAX_ATTEMPTS
    if just_locked:
        attempt.locked_until = now + timedelta(minutes=ADMIN_LOGIN_LOCK_MINUTES)
    return attempt, just_locked


def clear_login_attempts(db: Session, email: str) -> None:
    db.query(AdminLoginAttempt).filter(AdminLoginAttempt.email == email).delete(synchronize_session=False)
