from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from storefront.core.clock import utcnow
from storefront.core.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    orders = relationship("Order", back_populates="customer")
