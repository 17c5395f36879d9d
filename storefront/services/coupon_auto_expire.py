from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from storefront.core.clock import utcnow
from storefront.core.config import StorefrontSettings, get_settings
from storefront.models.coupon import Coupon, CouponRedemption

logger = logging.getLogger(__name__)
AUTO_EXPIRE_PREFIX = "[AUTO_EXPIRE]"


def evaluation_due_at(coupon: Coupon, default_days: int) -> datetime:
    days = coupon.auto_expire_after_days or default_days
    return coupon.created_at + timedelta(days=int(days))


def net_revenue_since_creation(db: Session, coupon: Coupon) -> int:
    total = (
        db.query(func.coalesce(func.sum(CouponRedemption.net_revenue), 0))
        .filter(
            CouponRedemption.coupon_id == coupon.id,
            CouponRedemption.redeemed_at >= coupon.created_at,
        )
        .scalar()
    )
    return int(total or 0)


def auto_expire_underperforming_coupons(
    db: Session,
    *,
    now: datetime | None = None,
    settings: StorefrontSettings | None = None,
) -> list[str]:
    """Disable auto-expiring coupons whose net revenue missed their threshold.

    Only coupons whose evaluation window has closed are considered. The
    update is guarded by ``auto_expired_at IS NULL`` so a concurrent or
    repeated sweep never stamps the same coupon twice; a code is reported
    only when this call changed the row.
    """
    now = now or utcnow()
    settings = settings or get_settings()

    candidates = (
        db.query(Coupon)
        .filter(
            Coupon.auto_expire_enabled.is_(True),
            Coupon.auto_expired_at.is_(None),
        )
        .order_by(Coupon.id.asc())
        .all()
    )

    expired_codes: list[str] = []
    for coupon in candidates:
        if now < evaluation_due_at(coupon, settings.auto_expire_default_days):
            continue

        net_revenue = net_revenue_since_creation(db, coupon)
        threshold = int(coupon.auto_expire_threshold or 0)
        if net_revenue >= threshold:
            continue

        result = db.execute(
            update(Coupon)
            .where(Coupon.id == coupon.id, Coupon.auto_expired_at.is_(None))
            .values(active=False, auto_expired_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue

        expired_codes.append(coupon.code)
        logger.info(
            "%s expired coupon code=%s net_revenue=%s threshold=%s",
            AUTO_EXPIRE_PREFIX,
            coupon.code,
            net_revenue,
            threshold,
        )

    db.commit()
    logger.info("%s sweep finished candidates=%s expired=%s", AUTO_EXPIRE_PREFIX, len(candidates), len(expired_codes))
    return expired_codes
