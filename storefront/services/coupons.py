from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from storefront.core.clock import utcnow
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.order import Order

logger = logging.getLogger(__name__)
COUPONS_PREFIX = "[COUPONS]"

EDITABLE_FIELDS = (
    "code",
    "description",
    "type",
    "value",
    "min_order_amount",
    "max_discount_amount",
    "max_redemptions",
    "per_customer_limit",
    "start_date",
    "end_date",
    "active",
    "block_affiliate_commission",
    "block_vip_discount",
    "min_margin_percent",
    "auto_expire_enabled",
    "auto_expire_threshold",
    "auto_expire_after_days",
)
REQUIRED_FIELDS = (
    "type",
    "value",
    "active",
    "block_affiliate_commission",
    "block_vip_discount",
    "min_margin_percent",
    "auto_expire_enabled",
    "auto_expire_threshold",
)


class CouponNotFoundError(LookupError):
    pass


class DuplicateCouponCodeError(ValueError):
    pass


class InvalidCouponError(ValueError):
    pass


class OrderNotFoundError(LookupError):
    pass


@dataclass
class CouponCheckResult:
    valid: bool
    message: str | None = None
    status_code: int = 200
    discount_amount: int = 0
    coupon: Coupon | None = None


@dataclass
class DeleteOutcome:
    deleted: bool
    soft_disabled: bool
    redemption_count: int = 0


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _div_round_half_up(numerator: int, denominator: int) -> int:
    if numerator < 0:
        return -_div_round_half_up(-numerator, denominator)
    return (numerator * 2 + denominator) // (denominator * 2)


def compute_discount_cents(coupon: Coupon, subtotal_cents: int) -> int:
    """Discount a coupon grants on a subtotal, before any margin floor.

    Percentage coupons round half-up to the cent, fixed coupons grant their
    value, free shipping grants nothing on the subtotal. ``max_discount_amount``
    caps the result when set.
    """
    coupon_type = (coupon.type or "").strip().lower()
    subtotal = int(subtotal_cents or 0)
    if coupon_type == "percentage":
        discount = _div_round_half_up(subtotal * int(coupon.value or 0), 100)
    elif coupon_type == "fixed":
        discount = int(coupon.value or 0)
    else:
        discount = 0

    if coupon.max_discount_amount and discount > int(coupon.max_discount_amount):
        discount = int(coupon.max_discount_amount)
    return max(discount, 0)


def get_coupon(db: Session, coupon_id: int) -> Coupon | None:
    return db.query(Coupon).filter(Coupon.id == coupon_id).first()


def get_coupon_by_code(db: Session, code: str | None) -> Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.query(Coupon).filter(func.upper(Coupon.code) == normalized).first()


def list_coupons(db: Session) -> list[Coupon]:
    return db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def _require_coupon(db: Session, coupon_id: int) -> Coupon:
    coupon = get_coupon(db, coupon_id)
    if coupon is None:
        raise CouponNotFoundError(coupon_id)
    return coupon


def _require_code(raw: str | None) -> str:
    code = normalize_code(raw)
    if not code:
        raise InvalidCouponError("Coupon code cannot be blank")
    return code


def _check_value_bounds(coupon_type: str | None, value: int | None) -> None:
    if coupon_type == "percentage" and int(value or 0) > 100:
        raise InvalidCouponError("Percentage coupons cannot exceed 100")


def create_coupon(db: Session, data: Mapping[str, Any]) -> Coupon:
    code = _require_code(data.get("code"))
    _check_value_bounds(data.get("type") or "percentage", data.get("value"))
    if get_coupon_by_code(db, code) is not None:
        raise DuplicateCouponCodeError(code)

    values = {key: data[key] for key in EDITABLE_FIELDS if key in data and data[key] is not None}
    values["code"] = code
    coupon = Coupon(**values)
    db.add(coupon)
    db.flush()
    logger.info("%s created coupon id=%s code=%s type=%s", COUPONS_PREFIX, coupon.id, coupon.code, coupon.type)
    return coupon


def update_coupon(db: Session, coupon_id: int, changes: Mapping[str, Any]) -> Coupon:
    coupon = _require_coupon(db, coupon_id)

    nulled = sorted(key for key in REQUIRED_FIELDS if key in changes and changes[key] is None)
    if nulled:
        raise InvalidCouponError(f"Fields cannot be null: {', '.join(nulled)}")
    # the merged coupon must still respect the percentage cap
    _check_value_bounds(changes.get("type", coupon.type), changes.get("value", coupon.value))

    if "code" in changes:
        new_code = _require_code(changes["code"])
        existing = get_coupon_by_code(db, new_code)
        if existing is not None and existing.id != coupon.id:
            raise DuplicateCouponCodeError(new_code)
        coupon.code = new_code

    for key in EDITABLE_FIELDS:
        if key == "code" or key not in changes:
            continue
        setattr(coupon, key, changes[key])

    if changes.get("active") is True:
        coupon.auto_expired_at = None

    db.flush()
    return coupon


def delete_coupon(db: Session, coupon_id: int) -> DeleteOutcome:
    """Hard-delete unused coupons; disable coupons that have redemption history."""
    coupon = _require_coupon(db, coupon_id)
    redemption_count = (
        db.query(func.count(CouponRedemption.id))
        .filter(CouponRedemption.coupon_id == coupon.id)
        .scalar()
    ) or 0

    if redemption_count:
        coupon.active = False
        db.flush()
        logger.info(
            "%s soft-disabled coupon id=%s code=%s redemptions=%s",
            COUPONS_PREFIX,
            coupon.id,
            coupon.code,
            redemption_count,
        )
        return DeleteOutcome(deleted=False, soft_disabled=True, redemption_count=int(redemption_count))

    db.delete(coupon)
    db.flush()
    logger.info("%s deleted coupon id=%s", COUPONS_PREFIX, coupon_id)
    return DeleteOutcome(deleted=True, soft_disabled=False)


def disable_coupon(db: Session, coupon_id: int) -> Coupon:
    coupon = _require_coupon(db, coupon_id)
    coupon.active = False
    db.flush()
    return coupon


def enable_coupon(db: Session, coupon_id: int) -> Coupon:
    coupon = _require_coupon(db, coupon_id)
    coupon.active = True
    coupon.auto_expired_at = None
    db.flush()
    return coupon


def check_coupon_for_checkout(
    db: Session,
    code: str | None,
    order_amount: int,
    *,
    now: datetime | None = None,
) -> CouponCheckResult:
    coupon = get_coupon_by_code(db, code)
    if coupon is None:
        return CouponCheckResult(valid=False, message="Invalid coupon code", status_code=404)
    if not coupon.active:
        return CouponCheckResult(valid=False, message="This coupon is no longer active", status_code=400)

    now = now or utcnow()
    if coupon.end_date is not None and coupon.end_date < now:
        return CouponCheckResult(valid=False, message="This coupon has expired", status_code=400)
    if coupon.start_date is not None and coupon.start_date > now:
        return CouponCheckResult(valid=False, message="This coupon is not yet active", status_code=400)
    if coupon.max_redemptions and int(coupon.times_used or 0) >= int(coupon.max_redemptions):
        return CouponCheckResult(
            valid=False,
            message="This coupon has reached its usage limit",
            status_code=400,
        )
    if coupon.min_order_amount and order_amount < int(coupon.min_order_amount):
        return CouponCheckResult(
            valid=False,
            message=f"Minimum order amount of ${int(coupon.min_order_amount) / 100:.2f} required",
            status_code=400,
        )

    discount = min(compute_discount_cents(coupon, order_amount), max(int(order_amount or 0), 0))
    return CouponCheckResult(valid=True, discount_amount=discount, coupon=coupon)


def record_redemption(
    db: Session,
    *,
    coupon_id: int,
    order_id: int,
    customer_id: int | None,
    discount_amount: int,
    order_subtotal: int,
    order_total: int,
    affiliate_code: str | None = None,
    affiliate_commission_blocked: bool = False,
) -> CouponRedemption:
    """Append a redemption row and bump the coupon's usage counter.

    Both writes share the caller's transaction. The counter uses an SQL
    increment expression, so concurrent checkouts never lose an update.
    """
    coupon = _require_coupon(db, coupon_id)
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFoundError(order_id)

    redemption = CouponRedemption(
        coupon_id=coupon.id,
        order_id=order.id,
        customer_id=customer_id,
        discount_amount=discount_amount,
        order_subtotal=order_subtotal,
        order_total=order_total,
        net_revenue=order_total - discount_amount,
        affiliate_code=affiliate_code,
        affiliate_commission_blocked=affiliate_commission_blocked,
    )
    db.add(redemption)
    db.execute(
        update(Coupon)
        .where(Coupon.id == coupon.id)
        .values(times_used=Coupon.times_used + 1)
        .execution_options(synchronize_session=False)
    )
    db.flush()
    db.refresh(coupon)
    logger.info(
        "%s redemption recorded coupon=%s order=%s discount=%s blocked=%s",
        COUPONS_PREFIX,
        coupon.code,
        order.id,
        discount_amount,
        affiliate_commission_blocked,
    )
    return redemption


def should_block_affiliate_commission(db: Session, order_id: int) -> bool:
    redemption = (
        db.query(CouponRedemption)
        .filter(CouponRedemption.order_id == order_id)
        .order_by(CouponRedemption.id.asc())
        .first()
    )
    if redemption is None:
        return False

    coupon = get_coupon(db, redemption.coupon_id)
    if coupon is None:
        return False
    if coupon.block_affiliate_commission:
        return True

    min_margin = int(coupon.min_margin_percent or 0)
    if min_margin > 0 and redemption.net_revenue is not None:
        order_total = int(redemption.order_total or 0)
        margin_percent = (redemption.net_revenue / order_total) * 100 if order_total > 0 else 0
        if margin_percent < min_margin:
            return True

    return False
