from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import ADMIN_LOGIN_LOCK_MINUTES, ADMIN_LOGIN_MAX_ATTEMPTS
from storefront.core.database import Base
from storefront.models.admin_audit_log import AdminAuditLog
from storefront.models.admin_login_attempt import AdminLoginAttempt
from storefront.services.admin_audit import audit_meta, list_admin_actions, log_admin_action
from storefront.services.admin_login_attempts import (
    check_login_lock,
    clear_login_attempts,
    register_failed_login,
)

NOW = datetime(2026, 3, 2, 9, 0, 0)
EMAIL = "admin@example.com"


def _session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _fail(db, times, start=NOW):
    locked = False
    for i in range(times):
        _, locked = register_failed_login(db, EMAIL, now=start + timedelta(seconds=i))
        db.flush()
    return locked


def test_account_locks_after_max_failures():
    db = _session()

    assert _fail(db, ADMIN_LOGIN_MAX_ATTEMPTS - 1) is False
    assert check_login_lock(db, EMAIL, now=NOW + timedelta(minutes=1)).locked is False

    assert _fail(db, 1, start=NOW + timedelta(minutes=1)) is True
    lock = check_login_lock(db, EMAIL, now=NOW + timedelta(minutes=2))
    assert lock.locked is True
    assert lock.until == NOW + timedelta(minutes=1 + ADMIN_LOGIN_LOCK_MINUTES)


def test_lock_lapses_and_counter_restarts():
    db = _session()
    _fail(db, ADMIN_LOGIN_MAX_ATTEMPTS)

    later = NOW + timedelta(minutes=ADMIN_LOGIN_LOCK_MINUTES + 1)
    locked, until = check_login_lock(db, EMAIL, now=later)
    assert (locked, until) == (False, None)

    attempt, just_locked = register_failed_login(db, EMAIL, now=later)
    assert just_locked is False
    assert attempt.failed_count == 1
    assert attempt.locked_until is None


def test_successful_login_clears_attempts():
    db = _session()
    _fail(db, 3)

    clear_login_attempts(db, EMAIL)
    db.commit()

    assert db.query(AdminLoginAttempt).count() == 0


def test_audit_entries_are_listed_newest_first_with_meta():
    db = _session()
    log_admin_action(db, user_id=7, action="create_coupon", entity_type="coupon", entity_id=1, meta={"code": "SAVE20"})
    log_admin_action(db, user_id=None, action="auto_expire_coupons", entity_type="coupon", entity_id=1)
    log_admin_action(db, user_id=7, action="create_coupon", entity_type="coupon", entity_id=2)
    db.commit()

    entries = list_admin_actions(db, entity_type="coupon", entity_id=1)

    assert [entry.action for entry in entries] == ["auto_expire_coupons", "create_coupon"]
    assert entries[0].user_id == 0
    assert audit_meta(entries[1]) == {"code": "SAVE20"}
    assert audit_meta(entries[0]) == {}


def test_unreadable_meta_is_ignored():
    entry = AdminAuditLog(id=1, user_id=7, action="x", meta_json="{not json")

    assert audit_meta(entry) == {}
