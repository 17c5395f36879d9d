from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront.core.config import StorefrontSettings, get_settings
from storefront.core.database import get_db
from storefront.deps import enforce_public_rate_limit, require_role
from storefront.models.admin_user import AdminUser
from storefront.schemas.coupons import (
    AutoExpireResponse,
    CommissionBlockedResponse,
    CouponAnalyticsResponse,
    CouponPerformanceRead,
    CouponRead,
    RedemptionCreate,
    RedemptionRead,
    StackingRequest,
    StackingResponse,
    ValidateCouponPayload,
    ValidateCouponResponse,
)
from storefront.services.admin_audit import log_admin_action
from storefront.services.coupon_analytics import get_analytics_summary, get_coupon_performance
from storefront.services.coupon_auto_expire import auto_expire_underperforming_coupons
from storefront.services.coupon_stacking import validate_stacking
from storefront.services.coupons import (
    CouponNotFoundError,
    OrderNotFoundError,
    check_coupon_for_checkout,
    disable_coupon,
    enable_coupon,
    record_redemption,
    should_block_affiliate_commission,
)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])
logger = logging.getLogger(__name__)

COUPON_NOT_FOUND = "Coupon not found"


@router.post(
    "/validate",
    response_model=ValidateCouponResponse,
    dependencies=[Depends(enforce_public_rate_limit)],
)
def validate_coupon(payload: ValidateCouponPayload, db: Session = Depends(get_db)):
    result = check_coupon_for_checkout(db, payload.code, payload.order_amount)
    if not result.valid:
        return JSONResponse(
            status_code=result.status_code,
            content={"valid": False, "message": result.message},
        )

    coupon = result.coupon
    return {
        "valid": True,
        "coupon": {
            "id": coupon.id,
            "code": coupon.code,
            "type": coupon.type,
            "value": int(coupon.value or 0),
            "discount_amount": result.discount_amount,
            "block_affiliate_commission": bool(coupon.block_affiliate_commission),
            "block_vip_discount": bool(coupon.block_vip_discount),
            "min_margin_percent": int(coupon.min_margin_percent or 0),
        },
    }


@router.post(
    "/validate-stacking",
    response_model=StackingResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_public_rate_limit)],
)
def validate_coupon_stacking(payload: StackingRequest, db: Session = Depends(get_db)):
    if not (payload.coupon_code or "").strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"valid": False, "message": "Coupon code required"},
        )

    result = validate_stacking(
        db,
        payload.coupon_code,
        has_affiliate=payload.has_affiliate,
        has_vip_discount=payload.has_vip_discount,
        order_subtotal=payload.order_subtotal,
    )
    return result.as_dict()


@router.get("/admin/performance", response_model=list[CouponPerformanceRead])
def coupon_performance(
    days: int | None = Query(None, ge=1, le=365),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    settings: StorefrontSettings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    return get_coupon_performance(db, days or settings.analytics_window_days)


@router.get("/admin/analytics", response_model=CouponAnalyticsResponse)
def coupon_analytics(
    days: int | None = Query(None, ge=1, le=365),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    settings: StorefrontSettings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    window = days or settings.analytics_window_days
    return {
        "days": window,
        "summary": get_analytics_summary(db, window),
        "coupons": get_coupon_performance(db, window),
    }


@router.post("/admin/auto-expire", response_model=AutoExpireResponse)
def run_auto_expire(
    user: AdminUser = Depends(require_role(["admin"])),
    settings: StorefrontSettings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    expired = auto_expire_underperforming_coupons(db, settings=settings)
    if expired:
        log_admin_action(
            db,
            user_id=user.id,
            action="auto_expire_coupons",
            entity_type="coupon",
            meta={"codes": expired},
        )
        db.commit()
    return {"success": True, "expired_count": len(expired), "expired_coupons": expired}


def _toggle_coupon(db: Session, user: AdminUser, coupon_id: int, *, enable: bool):
    try:
        coupon = enable_coupon(db, coupon_id) if enable else disable_coupon(db, coupon_id)
    except CouponNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COUPON_NOT_FOUND) from exc

    log_admin_action(
        db,
        user_id=user.id,
        action="enable_coupon" if enable else "disable_coupon",
        entity_type="coupon",
        entity_id=coupon.id,
        meta={"code": coupon.code},
    )
    db.commit()
    db.refresh(coupon)
    return coupon


@router.post("/admin/{coupon_id}/disable", response_model=CouponRead)
def disable_admin_coupon(
    coupon_id: int,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    return _toggle_coupon(db, user, coupon_id, enable=False)


@router.post("/admin/{coupon_id}/enable", response_model=CouponRead)
def enable_admin_coupon(
    coupon_id: int,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    return _toggle_coupon(db, user, coupon_id, enable=True)


@router.post("/redemptions", response_model=RedemptionRead, status_code=status.HTTP_201_CREATED)
def create_redemption(
    payload: RedemptionCreate,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    try:
        redemption = record_redemption(db, **payload.model_dump())
    except CouponNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COUPON_NOT_FOUND) from exc
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from exc

    log_admin_action(
        db,
        user_id=user.id,
        action="record_redemption",
        entity_type="coupon",
        entity_id=redemption.coupon_id,
        meta={"order_id": redemption.order_id, "discount": redemption.discount_amount},
    )
    db.commit()
    db.refresh(redemption)
    return redemption


@router.get("/orders/{order_id}/commission-blocked", response_model=CommissionBlockedResponse)
def order_commission_blocked(
    order_id: int,
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    db: Session = Depends(get_db),
):
    return {"order_id": order_id, "block_commission": should_block_affiliate_commission(db, order_id)}
