from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.database import Base
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.customer import Customer
from storefront.models.order import Order
from storefront.services.coupons import (
    CouponNotFoundError,
    DuplicateCouponCodeError,
    InvalidCouponError,
    OrderNotFoundError,
    check_coupon_for_checkout,
    compute_discount_cents,
    create_coupon,
    delete_coupon,
    enable_coupon,
    record_redemption,
    should_block_affiliate_commission,
    update_coupon,
)
from tests.fixtures_data import FIXED_COUPON, MARGIN_GUARD_COUPON, SAVE20_COUPON

NOW = datetime(2026, 3, 1, 9, 0, 0)


def _session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _order(db, total=10000):
    customer = Customer(name="Dana", email="dana@example.com")
    db.add(customer)
    db.flush()
    order = Order(customer_id=customer.id, subtotal_cents=total, total_cents=total)
    db.add(order)
    db.flush()
    return order


def test_create_coupon_normalizes_code_and_rejects_duplicates():
    db = _session()

    coupon = create_coupon(db, {**SAVE20_COUPON, "code": " save20 "})

    assert coupon.code == "SAVE20"
    assert coupon.times_used == 0
    with pytest.raises(DuplicateCouponCodeError):
        create_coupon(db, {**SAVE20_COUPON, "code": "Save20"})


def test_update_reactivation_clears_auto_expiry():
    db = _session()
    coupon = create_coupon(db, {**SAVE20_COUPON, "active": False})
    coupon.auto_expired_at = NOW

    updated = update_coupon(db, coupon.id, {"active": True, "description": "Back again"})

    assert updated.active is True
    assert updated.auto_expired_at is None
    assert updated.description == "Back again"


def test_update_missing_coupon_raises():
    db = _session()

    with pytest.raises(CouponNotFoundError):
        update_coupon(db, 404, {"active": False})


def test_update_checks_percentage_cap_against_merged_coupon():
    db = _session()
    percentage = create_coupon(db, SAVE20_COUPON)
    fixed = create_coupon(db, {**FIXED_COUPON, "value": 2000})

    with pytest.raises(InvalidCouponError):
        update_coupon(db, percentage.id, {"value": 150})
    with pytest.raises(InvalidCouponError):
        update_coupon(db, fixed.id, {"type": "percentage"})

    assert update_coupon(db, fixed.id, {"type": "percentage", "value": 15}).value == 15


def test_update_rejects_nulls_and_blank_codes():
    db = _session()
    coupon = create_coupon(db, SAVE20_COUPON)

    with pytest.raises(InvalidCouponError, match="active"):
        update_coupon(db, coupon.id, {"active": None})
    with pytest.raises(InvalidCouponError, match="blank"):
        update_coupon(db, coupon.id, {"code": "   "})
    with pytest.raises(InvalidCouponError, match="blank"):
        create_coupon(db, {**FIXED_COUPON, "code": "  "})

    assert update_coupon(db, coupon.id, {"description": None}).description is None


def test_enable_clears_auto_expired_at():
    db = _session()
    coupon = create_coupon(db, SAVE20_COUPON)
    coupon.active = False
    coupon.auto_expired_at = NOW

    enable_coupon(db, coupon.id)

    assert coupon.active is True
    assert coupon.auto_expired_at is None


def test_delete_without_redemptions_removes_row():
    db = _session()
    coupon = create_coupon(db, SAVE20_COUPON)

    outcome = delete_coupon(db, coupon.id)

    assert outcome.deleted is True
    assert db.query(Coupon).count() == 0


def test_delete_with_redemptions_soft_disables():
    db = _session()
    coupon = create_coupon(db, SAVE20_COUPON)
    order = _order(db)
    record_redemption(
        db,
        coupon_id=coupon.id,
        order_id=order.id,
        customer_id=order.customer_id,
        discount_amount=2000,
        order_subtotal=10000,
        order_total=8000,
    )

    outcome = delete_coupon(db, coupon.id)

    assert outcome.deleted is False
    assert outcome.soft_disabled is True
    assert outcome.redemption_count == 1
    assert db.query(Coupon).filter(Coupon.id == coupon.id).one().active is False


def test_record_redemption_keeps_counter_in_sync():
    db = _session()
    coupon = create_coupon(db, FIXED_COUPON)
    for _ in range(3):
        order = _order(db)
        redemption = record_redemption(
            db,
            coupon_id=coupon.id,
            order_id=order.id,
            customer_id=order.customer_id,
            discount_amount=1000,
            order_subtotal=10000,
            order_total=9000,
            affiliate_code="AFF1",
        )
    db.commit()

    count = db.query(func.count(CouponRedemption.id)).filter(CouponRedemption.coupon_id == coupon.id).scalar()
    assert coupon.times_used == count == 3
    assert redemption.net_revenue == 8000


def test_record_redemption_requires_existing_order():
    db = _session()
    coupon = create_coupon(db, FIXED_COUPON)

    with pytest.raises(OrderNotFoundError):
        record_redemption(
            db,
            coupon_id=coupon.id,
            order_id=999,
            customer_id=None,
            discount_amount=100,
            order_subtotal=1000,
            order_total=900,
        )
    assert coupon.times_used == 0


def test_commission_not_blocked_without_redemption():
    db = _session()
    order = _order(db)

    assert should_block_affiliate_commission(db, order.id) is False


def test_commission_blocked_by_coupon_flag():
    db = _session()
    coupon = create_coupon(db, MARGIN_GUARD_COUPON)
    order = _order(db)
    record_redemption(
        db,
        coupon_id=coupon.id,
        order_id=order.id,
        customer_id=None,
        discount_amount=100,
        order_subtotal=10000,
        order_total=10000,
    )

    assert should_block_affiliate_commission(db, order.id) is True


def test_commission_blocked_when_margin_falls_below_floor():
    db = _session()
    coupon = create_coupon(db, {**SAVE20_COUPON, "code": "FLOOR", "min_margin_percent": 85})
    order = _order(db)
    record_redemption(
        db,
        coupon_id=coupon.id,
        order_id=order.id,
        customer_id=None,
        discount_amount=2000,
        order_subtotal=10000,
        order_total=10000,
    )

    assert should_block_affiliate_commission(db, order.id) is True


def test_percentage_discount_rounds_half_up_and_respects_cap():
    coupon = Coupon(type="percentage", value=15, max_discount_amount=None)
    capped = Coupon(type="percentage", value=50, max_discount_amount=1500)
    shipping = Coupon(type="free_shipping", value=0, max_discount_amount=None)

    assert compute_discount_cents(coupon, 1010) == 152
    assert compute_discount_cents(capped, 10000) == 1500
    assert compute_discount_cents(shipping, 10000) == 0


def test_checkout_validation_messages():
    db = _session()
    create_coupon(db, {**SAVE20_COUPON, "code": "OLD", "end_date": NOW - timedelta(days=1)})
    create_coupon(db, {**SAVE20_COUPON, "code": "SOON", "start_date": NOW + timedelta(days=1)})
    create_coupon(db, {**SAVE20_COUPON, "code": "MAXED", "max_redemptions": 1})
    create_coupon(db, {**SAVE20_COUPON, "code": "BIG", "min_order_amount": 5000})
    create_coupon(db, {**SAVE20_COUPON, "code": "OFF", "active": False})
    db.query(Coupon).filter(Coupon.code == "MAXED").one().times_used = 1

    def message(code, amount=10000):
        return check_coupon_for_checkout(db, code, amount, now=NOW).message

    assert check_coupon_for_checkout(db, "NOPE", 10000, now=NOW).status_code == 404
    assert message("OFF") == "This coupon is no longer active"
    assert message("OLD") == "This coupon has expired"
    assert message("SOON") == "This coupon is not yet active"
    assert message("MAXED") == "This coupon has reached its usage limit"
    assert message("BIG", 4000) == "Minimum order amount of $50.00 required"


def test_fixed_discount_never_exceeds_order_amount():
    db = _session()
    create_coupon(db, FIXED_COUPON)

    result = check_coupon_for_checkout(db, "tenoff", 600, now=NOW)

    assert result.valid is True
    assert result.discount_amount == 600
