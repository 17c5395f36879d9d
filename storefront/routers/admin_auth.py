from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.deps import get_current_admin_user
from storefront.models.admin_user import AdminUser
from storefront.services.admin_audit import log_admin_action
from storefront.services.admin_auth import (
    build_admin_session_cookie_options,
    clear_admin_session_cookie,
    create_admin_session,
    set_admin_session_cookie,
)
from storefront.services.admin_login_attempts import (
    check_login_lock,
    clear_login_attempts,
    register_failed_login,
)
from storefront.services.passwords import hash_password, needs_rehash, verify_password

router = APIRouter(prefix="/api/admin/auth", tags=["admin-auth"])
logger = logging.getLogger(__name__)

TOO_MANY_ATTEMPTS = "Too many attempts. Try again in a few minutes."


class AdminLoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AdminUserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: str
    active: bool


def _serialize_user(user: AdminUser) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "active": bool(user.active),
    }


def _find_admin(db: Session, email: str) -> AdminUser | None:
    return db.query(AdminUser).filter(func.lower(AdminUser.email) == email).first()


@router.post("/login", response_model=AdminUserRead)
def admin_login(
    payload: AdminLoginPayload,
    response: Response,
    request: Request,
    db: Session = Depends(get_db),
):
    normalized_email = payload.email.strip().lower()

    locked, _ = check_login_lock(db, normalized_email)
    if locked:
        user = _find_admin(db, normalized_email)
        log_admin_action(
            db,
            user_id=user.id if user else 0,
            action="login_locked",
            entity_type="admin_user",
            entity_id=user.id if user else None,
            meta={"email": normalized_email},
        )
        db.commit()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=TOO_MANY_ATTEMPTS)

    user = _find_admin(db, normalized_email)
    password_is_valid = user is not None and verify_password(payload.password, user.password_hash)
    if not user or not user.active or not password_is_valid:
        _, locked_after = register_failed_login(db, normalized_email)
        log_admin_action(
            db,
            user_id=user.id if user else 0,
            action="login_failed",
            entity_type="admin_user",
            entity_id=user.id if user else None,
            meta={"email": normalized_email},
        )
        if locked_after:
            log_admin_action(
                db,
                user_id=user.id if user else 0,
                action="login_locked",
                entity_type="admin_user",
                entity_id=user.id if user else None,
                meta={"email": normalized_email},
            )
        db.commit()
        if locked_after:
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=TOO_MANY_ATTEMPTS)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(payload.password)

    token = create_admin_session(user)
    cookie_options = build_admin_session_cookie_options(request)
    logger.info(
        "[AUTH_COOKIE] setting admin_session domain=%s samesite=%s secure=%s",
        cookie_options.get("domain") or "host-only",
        cookie_options["samesite"],
        cookie_options["secure"],
    )
    set_admin_session_cookie(response, token, request)

    clear_login_attempts(db, normalized_email)
    log_admin_action(db, user_id=user.id, action="login_success")
    db.commit()

    return _serialize_user(user)


@router.post("/logout")
def admin_logout(response: Response, request: Request):
    clear_admin_session_cookie(response, request)
    return {"ok": True}


@router.get("/me", response_model=AdminUserRead)
def admin_me(user: AdminUser = Depends(get_current_admin_user)):
    return _serialize_user(user)
