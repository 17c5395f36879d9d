"""Coupon stacking rules.

Decides, for a coupon code and the economics of an order, whether the coupon
may be applied alongside affiliate attribution and VIP pricing, and how far
its discount may go before it eats into the configured margin floor.

Rule failures come back as ``StackingValidationResult(valid=False, ...)``;
nothing here raises for a bad code or a conflicting promotion.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from storefront.models.coupon import Coupon
from storefront.services.coupons import compute_discount_cents, get_coupon_by_code

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Invalid coupon code"
INACTIVE_MESSAGE = "Coupon is inactive"
VIP_CONFLICT_MESSAGE = "This coupon cannot be combined with VIP discounts"


@dataclass(frozen=True)
class StackingValidationResult:
    valid: bool
    block_affiliate_commission: bool
    block_vip_discount: bool
    message: str | None = None
    adjusted_discount: int | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def max_discount_for_margin(subtotal_cents: int, min_margin_percent: int) -> int:
    """Largest whole-cent discount that keeps (subtotal - discount) / subtotal >= floor."""
    if subtotal_cents <= 0:
        return 0
    return (subtotal_cents * (100 - min_margin_percent)) // 100


def margin_below_floor(subtotal_cents: int, discount_cents: int, min_margin_percent: int) -> bool:
    if subtotal_cents <= 0:
        # free order: any positive discount leaves no margin at all
        return discount_cents > 0
    return (subtotal_cents - discount_cents) * 100 < min_margin_percent * subtotal_cents


def evaluate_stacking(
    coupon: Coupon | None,
    *,
    has_affiliate: bool,
    has_vip_discount: bool,
    order_subtotal: int,
) -> StackingValidationResult:
    if coupon is None:
        return StackingValidationResult(
            valid=False,
            block_affiliate_commission=False,
            block_vip_discount=False,
            message=INVALID_CODE_MESSAGE,
        )

    if not coupon.active:
        return StackingValidationResult(
            valid=False,
            block_affiliate_commission=False,
            block_vip_discount=False,
            message=INACTIVE_MESSAGE,
        )

    block_affiliate_commission = bool(coupon.block_affiliate_commission)
    block_vip_discount = bool(coupon.block_vip_discount)

    if block_vip_discount and has_vip_discount:
        return StackingValidationResult(
            valid=False,
            block_affiliate_commission=block_affiliate_commission,
            block_vip_discount=block_vip_discount,
            message=VIP_CONFLICT_MESSAGE,
        )

    adjusted_discount: int | None = None
    min_margin = int(coupon.min_margin_percent or 0)
    if min_margin > 0:
        subtotal = int(order_subtotal or 0)
        discount = compute_discount_cents(coupon, subtotal)
        if margin_below_floor(subtotal, discount, min_margin):
            adjusted_discount = max_discount_for_margin(subtotal, min_margin)
            logger.info(
                "Margin floor capped discount code=%s subtotal=%s discount=%s adjusted=%s floor=%s affiliate=%s",
                coupon.code,
                subtotal,
                discount,
                adjusted_discount,
                min_margin,
                has_affiliate,
            )

    return StackingValidationResult(
        valid=True,
        block_affiliate_commission=block_affiliate_commission,
        block_vip_discount=block_vip_discount,
        adjusted_discount=adjusted_discount,
    )


def validate_stacking(
    db: Session,
    coupon_code: str,
    *,
    has_affiliate: bool = False,
    has_vip_discount: bool = False,
    order_subtotal: int = 0,
) -> StackingValidationResult:
    coupon = get_coupon_by_code(db, coupon_code)
    return evaluate_stacking(
        coupon,
        has_affiliate=has_affiliate,
        has_vip_discount=has_vip_discount,
        order_subtotal=order_subtotal,
    )
