from __future__ import annotations

import hashlib
import hmac
from typing import Any
from urllib.parse import urlsplit

from fastapi import Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer

from storefront.core.config import (
    ADMIN_SESSION_COOKIE_DOMAIN,
    ADMIN_SESSION_COOKIE_SAMESITE,
    ADMIN_SESSION_COOKIE_SECURE,
    ADMIN_SESSION_MAX_AGE_SECONDS,
    ADMIN_SESSION_SECRET,
)

ADMIN_SESSION_COOKIE = "admin_session"
ADMIN_SESSION_SALT = "storefront-admin-session"
LOCAL_HOSTS = {"", "localhost", "127.0.0.1", "testserver"}


def _serializer() -> URLSafeTimedSerializer:
    if not ADMIN_SESSION_SECRET:
        raise RuntimeError("ADMIN_SESSION_SECRET is not configured.")
    return URLSafeTimedSerializer(ADMIN_SESSION_SECRET, salt=ADMIN_SESSION_SALT)


def password_fingerprint(password_hash: str | None) -> str:
    """Short keyed digest of the stored hash; changes whenever the password does."""
    digest = hmac.new(
        ADMIN_SESSION_SECRET.encode("utf-8"),
        (password_hash or "").encode("utf-8"),
        hashlib.sha256,
    )
    return digest.hexdigest()[:16]


def create_admin_session(user) -> str:
    return _serializer().dumps(
        {
            "user_id": user.id,
            "role": user.role,
            "pwd": password_fingerprint(user.password_hash),
        }
    )


def decode_admin_session(token: str) -> dict[str, Any] | None:
    # SignatureExpired is a BadSignature; max_age enforces the session lifetime
    try:
        payload = _serializer().loads(token, max_age=ADMIN_SESSION_MAX_AGE_SECONDS)
    except BadSignature:
        return None
    return payload if isinstance(payload, dict) else None


def session_matches_user(payload: dict[str, Any], user) -> bool:
    """A password reset invalidates every session signed before it."""
    return hmac.compare_digest(
        str(payload.get("pwd") or ""),
        password_fingerprint(user.password_hash),
    )


def _request_hosts(request: Request | None) -> tuple[str, str]:
    if request is None:
        return "", ""
    host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").lower()
    host = host.split(",")[0].strip().split(":")[0]
    origin = (request.headers.get("origin") or "").strip()
    origin_host = (urlsplit(origin).hostname or "").lower() if origin else ""
    return host, origin_host


def build_admin_session_cookie_options(request: Request | None = None) -> dict[str, Any]:
    host, origin_host = _request_hosts(request)
    secure = ADMIN_SESSION_COOKIE_SECURE or host not in LOCAL_HOSTS
    samesite = ADMIN_SESSION_COOKIE_SAMESITE

    # admin SPA on another domain needs SameSite=None
    if origin_host and host and origin_host != host and secure:
        samesite = "none"
    # browsers drop SameSite=None cookies without Secure
    if samesite == "none" and not secure:
        samesite = "lax"

    return {
        "domain": ADMIN_SESSION_COOKIE_DOMAIN,
        "httponly": True,
        "samesite": samesite,
        "path": "/",
        "secure": secure,
    }


def set_admin_session_cookie(response: Response, token: str, request: Request | None = None) -> None:
    response.set_cookie(
        key=ADMIN_SESSION_COOKIE,
        value=token,
        max_age=ADMIN_SESSION_MAX_AGE_SECONDS,
        **build_admin_session_cookie_options(request),
    )


def clear_admin_session_cookie(response: Response, request: Request | None = None) -> None:
    response.delete_cookie(key=ADMIN_SESSION_COOKIE, **build_admin_session_cookie_options(request))
