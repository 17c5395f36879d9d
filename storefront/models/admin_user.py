from sqlalchemy import Boolean, Column, DateTime, Integer, String

from storefront.core.clock import utcnow
from storefront.core.database import Base


class AdminUser(Base):
    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    # owner / admin have full access, support is read-only
    role = Column(String, nullable=False, default="admin")
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
