from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.database import Base
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.order import Order
from storefront.services.coupon_analytics import get_analytics_summary, get_coupon_performance

NOW = datetime(2026, 5, 1, 12, 0, 0)


def _session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _seed(db):
    big = Coupon(code="BIG", type="percentage", value=10, times_used=2, created_at=NOW - timedelta(days=60))
    weak = Coupon(
        code="WEAK",
        type="fixed",
        value=500,
        times_used=1,
        auto_expire_enabled=True,
        auto_expire_threshold=100000,
        created_at=NOW - timedelta(days=10),
    )
    unused = Coupon(code="UNUSED", type="percentage", value=5, active=False, created_at=NOW - timedelta(days=5))
    db.add_all([big, weak, unused])
    db.flush()

    rows = [
        (big, 20000, 2000, "AFF", False, NOW - timedelta(days=3)),
        (big, 10000, 1000, None, False, NOW - timedelta(days=4)),
        (big, 50000, 5000, None, False, NOW - timedelta(days=45)),
        (weak, 4000, 500, "AFF", True, NOW - timedelta(days=1)),
    ]
    for coupon, total, discount, affiliate, blocked, redeemed_at in rows:
        order = Order(total_cents=total, subtotal_cents=total, coupon_id=coupon.id)
        db.add(order)
        db.flush()
        db.add(
            CouponRedemption(
                coupon_id=coupon.id,
                order_id=order.id,
                discount_amount=discount,
                order_subtotal=total,
                order_total=total,
                net_revenue=total - discount,
                affiliate_code=affiliate,
                affiliate_commission_blocked=blocked,
                redeemed_at=redeemed_at,
            )
        )
    db.commit()


def test_performance_only_counts_redemptions_inside_window():
    db = _session()
    _seed(db)

    performance = get_coupon_performance(db, 30, now=NOW)
    by_code = {entry.code: entry for entry in performance}

    assert by_code["BIG"].total_order_revenue == 30000
    assert by_code["BIG"].total_discount_given == 3000
    assert by_code["BIG"].net_revenue == 27000
    assert by_code["BIG"].average_order_value == 15000
    assert by_code["BIG"].affiliate_overlap == 1
    assert by_code["BIG"].margin_percent == 90.0
    assert by_code["UNUSED"].margin_percent == 0.0


def test_performance_is_sorted_by_net_revenue():
    db = _session()
    _seed(db)

    codes = [entry.code for entry in get_coupon_performance(db, 30, now=NOW)]

    assert codes == ["BIG", "WEAK", "UNUSED"]


def test_underperforming_requires_usage_and_auto_expire():
    db = _session()
    _seed(db)

    by_code = {entry.code: entry for entry in get_coupon_performance(db, 30, now=NOW)}

    assert by_code["WEAK"].is_underperforming is True
    assert by_code["WEAK"].affiliate_commission_blocked == 1
    assert by_code["BIG"].is_underperforming is False
    assert by_code["UNUSED"].is_underperforming is False


def test_summary_totals():
    db = _session()
    _seed(db)

    summary = get_analytics_summary(db, 30, now=NOW)

    assert summary.total_coupons == 3
    assert summary.active_coupons == 2
    assert summary.total_redemptions == 3
    assert summary.total_discount_cost == 3500
    assert summary.total_net_revenue == 30500
    assert summary.affiliate_overlap_count == 2
    assert summary.underperforming_count == 1
    assert round(summary.average_margin_percent, 2) == round(30500 / 34000 * 100, 2)


def test_summary_with_no_revenue_reports_full_margin():
    db = _session()

    summary = get_analytics_summary(db, 30, now=NOW)

    assert summary.total_coupons == 0
    assert summary.average_margin_percent == 100.0
