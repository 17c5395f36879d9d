import os

# must run before storefront.core.config is imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("ADMIN_SESSION_SECRET", "test-admin-session-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///./storefront-test.db")
