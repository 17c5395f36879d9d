from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from storefront.core.clock import utcnow
from storefront.core.database import Base

COUPON_TYPES = ("percentage", "fixed", "free_shipping")


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    # percentage: 0-100, fixed: cents, free_shipping: ignored
    type = Column(String(20), nullable=False, default="percentage")
    value = Column(Integer, nullable=False, default=0)
    min_order_amount = Column(Integer, nullable=True)
    max_discount_amount = Column(Integer, nullable=True)
    max_redemptions = Column(Integer, nullable=True)
    per_customer_limit = Column(Integer, nullable=True, default=1)
    times_used = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    # Stacking rules
    block_affiliate_commission = Column(Boolean, nullable=False, default=False)
    block_vip_discount = Column(Boolean, nullable=False, default=False)
    min_margin_percent = Column(Integer, nullable=False, default=0)

    # Auto-expire
    auto_expire_enabled = Column(Boolean, nullable=False, default=False)
    auto_expire_threshold = Column(Integer, nullable=False, default=0)
    auto_expire_after_days = Column(Integer, nullable=True, default=30)
    auto_expired_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    redemptions = relationship("CouponRedemption", back_populates="coupon")
    orders = relationship("Order", back_populates="coupon")


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    discount_amount = Column(Integer, nullable=False)
    order_subtotal = Column(Integer, nullable=False, default=0)
    order_total = Column(Integer, nullable=False, default=0)
    net_revenue = Column(Integer, nullable=False, default=0)
    affiliate_code = Column(String(64), nullable=True)
    affiliate_commission_blocked = Column(Boolean, nullable=False, default=False)
    redeemed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    coupon = relationship("Coupon", back_populates="redemptions")
    order = relationship("Order", back_populates="coupon_redemptions")
    customer = relationship("Customer")
