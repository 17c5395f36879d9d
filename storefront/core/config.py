import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

# Loads the .env at the project root
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name}: {raw}") from exc


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

SITE_NAME = os.getenv("SITE_NAME", "Power Plunge").strip() or "Power Plunge"
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000").strip().rstrip("/")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:5000",
        "http://127.0.0.1:5000",
    ]

# Admin session (signed cookie)
ADMIN_SESSION_SECRET = os.getenv("ADMIN_SESSION_SECRET", "")
ADMIN_SESSION_MAX_AGE_SECONDS = _env_int("ADMIN_SESSION_MAX_AGE_SECONDS", 604800)
ADMIN_SESSION_COOKIE_SECURE = _env_flag("ADMIN_SESSION_COOKIE_SECURE", "0" if IS_DEV else "1")
ADMIN_SESSION_COOKIE_SAMESITE = os.getenv(
    "ADMIN_SESSION_COOKIE_SAMESITE",
    "lax",
).strip().lower()
if ADMIN_SESSION_COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    ADMIN_SESSION_COOKIE_SAMESITE = "lax"
ADMIN_SESSION_COOKIE_DOMAIN = os.getenv("ADMIN_SESSION_COOKIE_DOMAIN", "").strip() or None
ADMIN_LOGIN_MAX_ATTEMPTS = _env_int("ADMIN_LOGIN_MAX_ATTEMPTS", 8)
ADMIN_LOGIN_WINDOW_MINUTES = _env_int("ADMIN_LOGIN_WINDOW_MINUTES", 10)
ADMIN_LOGIN_LOCK_MINUTES = _env_int("ADMIN_LOGIN_LOCK_MINUTES", 10)

# Transactional email (Mailgun)
MAILGUN_API_KEY = os.getenv("MAILGUN_API_KEY", "").strip()
MAILGUN_DOMAIN = os.getenv("MAILGUN_DOMAIN", "").strip()
MAILGUN_API_BASE = os.getenv("MAILGUN_API_BASE", "https://api.mailgun.net/v3").strip().rstrip("/")
MAILGUN_FROM = os.getenv("MAILGUN_FROM", f"{SITE_NAME} <no-reply@{MAILGUN_DOMAIN or 'localhost'}>")

# Public endpoints (coupon validation, cart tracking)
PUBLIC_RATE_LIMIT = _env_int("PUBLIC_RATE_LIMIT", 120)
PUBLIC_RATE_LIMIT_WINDOW_SECONDS = _env_int("PUBLIC_RATE_LIMIT_WINDOW_SECONDS", 60)


@dataclass(frozen=True)
class StorefrontSettings:
    """Business settings handed to services instead of read from globals."""

    site_name: str = "Power Plunge"
    public_base_url: str = "http://localhost:5000"
    analytics_window_days: int = 30
    auto_expire_default_days: int = 30
    cart_abandonment_minutes: int = 60
    max_recovery_emails: int = 2
    first_recovery_email_hours: int = 4
    second_recovery_email_hours: int = 24
    recovery_email_interval_hours: int = 24
    failed_payment_expiry_days: int = 7


def load_settings() -> StorefrontSettings:
    return StorefrontSettings(
        site_name=SITE_NAME,
        public_base_url=PUBLIC_BASE_URL,
        analytics_window_days=_env_int("ANALYTICS_WINDOW_DAYS", 30),
        auto_expire_default_days=_env_int("AUTO_EXPIRE_DEFAULT_DAYS", 30),
        cart_abandonment_minutes=_env_int("CART_ABANDONMENT_MINUTES", 60),
        max_recovery_emails=_env_int("MAX_RECOVERY_EMAILS", 2),
        first_recovery_email_hours=_env_int("FIRST_RECOVERY_EMAIL_HOURS", 4),
        second_recovery_email_hours=_env_int("SECOND_RECOVERY_EMAIL_HOURS", 24),
        recovery_email_interval_hours=_env_int("RECOVERY_EMAIL_INTERVAL_HOURS", 24),
        failed_payment_expiry_days=_env_int("FAILED_PAYMENT_EXPIRY_DAYS", 7),
    )


@lru_cache
def get_settings() -> StorefrontSettings:
    return load_settings()
