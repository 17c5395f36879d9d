import sqlalchemy as sa
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from storefront.core.clock import utcnow
from storefront.core.database import Base

_JSON = JSONB().with_variant(sa.JSON(), "sqlite")


class AbandonedCart(Base):
    __tablename__ = "abandoned_carts"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(128), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    email = Column(String(255), nullable=True)
    # {"items": [...], "couponCode": ..., "subtotal": ...}
    cart_data = Column(_JSON, nullable=False)
    cart_value = Column(Integer, nullable=False)
    coupon_code = Column(String(64), nullable=True)
    affiliate_code = Column(String(64), nullable=True)
    last_activity_at = Column(DateTime, nullable=False, default=utcnow)
    abandoned_at = Column(DateTime, nullable=True)
    recovery_email_sent = Column(Integer, nullable=False, default=0)
    recovery_email_sent_at = Column(DateTime, nullable=True)
    recovered_at = Column(DateTime, nullable=True)
    recovered_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class FailedPayment(Base):
    __tablename__ = "failed_payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    email = Column(String(255), nullable=False)
    payment_intent_id = Column(String(128), nullable=True)
    amount = Column(Integer, nullable=False)
    failure_reason = Column(Text, nullable=True)
    failure_code = Column(String(64), nullable=True)
    recovery_email_sent = Column(Integer, nullable=False, default=0)
    recovery_email_sent_at = Column(DateTime, nullable=True)
    recovered_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class RecoveryEvent(Base):
    __tablename__ = "recovery_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(30), nullable=False)  # abandoned_cart / failed_payment
    source_id = Column(Integer, nullable=False, index=True)
    action = Column(String(30), nullable=False)  # email_sent / recovered / expired
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    revenue_recovered = Column(Integer, nullable=False, default=0)
    metadata_json = Column(_JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
