import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.core.config import CORS_ORIGINS, DATABASE_URL, ENV_NORMALIZED
from storefront.core.database import Base, SessionLocal, engine
from storefront.core.logging_setup import configure_logging
from storefront.core.startup_checks import ensure_migrations_applied, validate_database_environment
from storefront.middleware.observability import ObservabilityMiddleware
import storefront.models  # noqa: F401  registers every table before create_all

from storefront.services.admin_bootstrap import bootstrap_initial_admin, ensure_admin_tables
from storefront.routers.admin_auth import router as admin_auth_router
from storefront.routers.admin_coupons import router as admin_coupons_router
from storefront.routers.coupons import router as coupons_router
from storefront.routers.recovery import router as recovery_router

configure_logging()

logger = logging.getLogger(__name__)
BOOTSTRAP_PREFIX = "[ADMIN_BOOTSTRAP]"
DEFAULT_ADMIN_EMAIL = "admin@example.com"
DEFAULT_ADMIN_NAME = "Admin"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Storefront Promotions API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


def _bootstrap_initial_admin() -> None:
    password = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
    if not password:
        logger.warning("%s skipped: configure DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    db = SessionLocal()
    try:
        bootstrap_initial_admin(
            db,
            email=os.getenv("DEV_ADMIN_EMAIL", "").strip() or DEFAULT_ADMIN_EMAIL,
            name=os.getenv("DEV_ADMIN_NAME", "").strip() or DEFAULT_ADMIN_NAME,
            password=password,
        )
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            # dev databases; real environments run alembic
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_admin_tables(engine)
        if ENV_NORMALIZED != "test":
            _bootstrap_initial_admin()
    except Exception:
        logger.exception("%s startup failed", BOOTSTRAP_PREFIX)
        raise


app.include_router(admin_auth_router)
app.include_router(admin_coupons_router)
app.include_router(coupons_router)
app.include_router(recovery_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
