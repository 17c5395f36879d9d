from sqlalchemy import Column, DateTime, Integer, String, Text

from storefront.core.clock import utcnow
from storefront.core.database import Base


class EmailLog(Base):
    __tablename__ = "email_log"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(30), nullable=False)
    to_email = Column(String(255), nullable=False, index=True)
    subject = Column(String(255), nullable=False)
    category = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
