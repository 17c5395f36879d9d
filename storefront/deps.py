# storefront/deps.py
from __future__ import annotations

import logging
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.rate_limiter import RateLimiterService, public_rate_limiter
from storefront.core.request_context import set_request_context
from storefront.models.admin_user import AdminUser
from storefront.services.admin_auth import (
    ADMIN_SESSION_COOKIE,
    decode_admin_session,
    session_matches_user,
)

logger = logging.getLogger(__name__)

FULL_ACCESS_ROLES = {"owner", "admin"}


def _normalize_admin_role(role: str | None) -> str:
    return (role or "").strip().lower()


def _log_access_denied(*, reason: str, user: AdminUser, request: Request) -> None:
    logger.warning(
        "Access denied (%s): user_id=%s user_role=%s endpoint=%s",
        reason,
        getattr(user, "id", None),
        getattr(user, "role", None),
        f"{request.method} {request.url.path}",
    )


def get_current_admin_user(
    request: Request,
    db: Session = Depends(get_db),
) -> AdminUser:
    token = request.cookies.get(ADMIN_SESSION_COOKIE)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin not authenticated")

    payload = decode_admin_session(token)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user = (
        db.query(AdminUser)
        .filter(AdminUser.id == int(user_id), AdminUser.active.is_(True))
        .first()
    )
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin not found")
    if not session_matches_user(payload, user):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")

    request.state.admin_user_id = str(user.id)
    set_request_context(admin_user_id=str(user.id))
    return user


def require_admin_user(
    request: Request,
    db: Session = Depends(get_db),
) -> AdminUser:
    return get_current_admin_user(request, db)


def require_role(roles: Iterable[str]):
    allowed = {role.strip().lower() for role in roles}
    if allowed & FULL_ACCESS_ROLES:
        allowed.update(FULL_ACCESS_ROLES)

    def _dependency(
        request: Request,
        user: AdminUser = Depends(require_admin_user),
    ) -> AdminUser:
        if _normalize_admin_role(user.role) not in allowed:
            _log_access_denied(reason="role_denied", user=user, request=request)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return _dependency


def get_public_rate_limiter() -> RateLimiterService:
    return public_rate_limiter


def _client_key(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else "unknown"


def enforce_public_rate_limit(
    request: Request,
    limiter: RateLimiterService = Depends(get_public_rate_limiter),
) -> None:
    decision = limiter.check(client_key=_client_key(request), endpoint=request.url.path)
    if decision.allowed:
        return
    logger.warning(
        "Public rate limit exceeded client=%s endpoint=%s",
        _client_key(request),
        request.url.path,
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests",
        headers={
            "Retry-After": str(decision.retry_after_seconds),
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": "0",
        },
    )
