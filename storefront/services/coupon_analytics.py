from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from storefront.core.clock import utcnow
from storefront.models.coupon import Coupon, CouponRedemption


@dataclass
class CouponPerformance:
    coupon_id: int
    code: str
    description: str | None
    type: str
    value: int
    active: bool
    times_used: int
    total_order_revenue: int
    total_discount_given: int
    net_revenue: int
    average_order_value: float
    affiliate_overlap: int
    affiliate_commission_blocked: int
    margin_percent: float
    is_underperforming: bool
    auto_expire_enabled: bool
    auto_expired_at: datetime | None
    created_at: datetime


@dataclass
class CouponAnalyticsSummary:
    total_coupons: int
    active_coupons: int
    total_redemptions: int
    total_discount_cost: int
    total_net_revenue: int
    affiliate_overlap_count: int
    average_margin_percent: float
    underperforming_count: int


def _redemptions_by_coupon(db: Session, since: datetime) -> dict[int, list[CouponRedemption]]:
    rows = db.query(CouponRedemption).filter(CouponRedemption.redeemed_at >= since).all()
    grouped: dict[int, list[CouponRedemption]] = {}
    for row in rows:
        grouped.setdefault(row.coupon_id, []).append(row)
    return grouped


def _performance_for(coupon: Coupon, redemptions: list[CouponRedemption]) -> CouponPerformance:
    total_discount = sum(int(r.discount_amount or 0) for r in redemptions)
    total_revenue = sum(int(r.order_total or 0) for r in redemptions)
    net_revenue = total_revenue - total_discount
    margin_percent = (net_revenue / total_revenue) * 100 if total_revenue > 0 else 0.0
    is_underperforming = bool(
        coupon.auto_expire_enabled
        and net_revenue < int(coupon.auto_expire_threshold or 0)
        and int(coupon.times_used or 0) > 0
    )
    return CouponPerformance(
        coupon_id=coupon.id,
        code=coupon.code,
        description=coupon.description,
        type=coupon.type,
        value=int(coupon.value or 0),
        active=bool(coupon.active),
        times_used=int(coupon.times_used or 0),
        total_order_revenue=total_revenue,
        total_discount_given=total_discount,
        net_revenue=net_revenue,
        average_order_value=(total_revenue / len(redemptions)) if redemptions else 0.0,
        affiliate_overlap=sum(1 for r in redemptions if r.affiliate_code),
        affiliate_commission_blocked=sum(1 for r in redemptions if r.affiliate_commission_blocked),
        margin_percent=margin_percent,
        is_underperforming=is_underperforming,
        auto_expire_enabled=bool(coupon.auto_expire_enabled),
        auto_expired_at=coupon.auto_expired_at,
        created_at=coupon.created_at,
    )


def get_coupon_performance(db: Session, days: int = 30, *, now: datetime | None = None) -> list[CouponPerformance]:
    since = (now or utcnow()) - timedelta(days=days)
    grouped = _redemptions_by_coupon(db, since)
    performances = [
        _performance_for(coupon, grouped.get(coupon.id, []))
        for coupon in db.query(Coupon).order_by(Coupon.id.asc()).all()
    ]
    performances.sort(key=lambda item: item.net_revenue, reverse=True)
    return performances


def get_analytics_summary(db: Session, days: int = 30, *, now: datetime | None = None) -> CouponAnalyticsSummary:
    performances = get_coupon_performance(db, days, now=now)

    total_net_revenue = sum(p.net_revenue for p in performances)
    total_order_revenue = sum(p.total_order_revenue for p in performances)
    average_margin = (total_net_revenue / total_order_revenue) * 100 if total_order_revenue > 0 else 100.0

    return CouponAnalyticsSummary(
        total_coupons=len(performances),
        active_coupons=sum(1 for p in performances if p.active),
        total_redemptions=sum(p.times_used for p in performances),
        total_discount_cost=sum(p.total_discount_given for p in performances),
        total_net_revenue=total_net_revenue,
        affiliate_overlap_count=sum(p.affiliate_overlap for p in performances),
        average_margin_percent=average_margin,
        underperforming_count=sum(1 for p in performances if p.is_underperforming),
    )
