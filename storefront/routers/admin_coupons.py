from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.deps import require_role
from storefront.models.admin_user import AdminUser
from storefront.schemas.coupons import (
    CouponCreate,
    CouponDeleteResponse,
    CouponHistoryEntry,
    CouponRead,
    CouponUpdate,
)
from storefront.services.admin_audit import audit_meta, list_admin_actions, log_admin_action
from storefront.services.coupons import (
    CouponNotFoundError,
    DuplicateCouponCodeError,
    InvalidCouponError,
    create_coupon,
    delete_coupon,
    get_coupon,
    list_coupons,
    update_coupon,
)

router = APIRouter(prefix="/api/admin/coupons", tags=["admin-coupons"])

COUPON_NOT_FOUND = "Coupon not found"
DUPLICATE_CODE = "Coupon code already exists"


@router.get("", response_model=List[CouponRead])
def list_admin_coupons(
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    db: Session = Depends(get_db),
):
    return list_coupons(db)


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_admin_coupon(
    payload: CouponCreate,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    try:
        coupon = create_coupon(db, payload.model_dump())
    except DuplicateCouponCodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_CODE) from exc
    except InvalidCouponError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_admin_action(
        db,
        user_id=user.id,
        action="create_coupon",
        entity_type="coupon",
        entity_id=coupon.id,
        meta={"code": coupon.code, "type": coupon.type, "value": coupon.value},
    )
    db.commit()
    db.refresh(coupon)
    return coupon


@router.patch("/{coupon_id}", response_model=CouponRead)
def update_admin_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    try:
        coupon = update_coupon(db, coupon_id, changes)
    except CouponNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COUPON_NOT_FOUND) from exc
    except DuplicateCouponCodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_CODE) from exc
    except InvalidCouponError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    log_admin_action(
        db,
        user_id=user.id,
        action="update_coupon",
        entity_type="coupon",
        entity_id=coupon.id,
        meta={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(coupon)
    return coupon


@router.delete("/{coupon_id}", response_model=CouponDeleteResponse)
def delete_admin_coupon(
    coupon_id: int,
    user: AdminUser = Depends(require_role(["admin"])),
    db: Session = Depends(get_db),
):
    try:
        outcome = delete_coupon(db, coupon_id)
    except CouponNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COUPON_NOT_FOUND) from exc

    log_admin_action(
        db,
        user_id=user.id,
        action="delete_coupon" if outcome.deleted else "disable_coupon",
        entity_type="coupon",
        entity_id=coupon_id,
        meta={"redemptions": outcome.redemption_count},
    )
    db.commit()

    if outcome.soft_disabled:
        message = "Coupon has redemptions and was disabled instead of deleted"
    else:
        message = "Coupon deleted"
    return {
        "deleted": outcome.deleted,
        "soft_disabled": outcome.soft_disabled,
        "redemption_count": outcome.redemption_count,
        "message": message,
    }


@router.get("/{coupon_id}/history", response_model=List[CouponHistoryEntry])
def coupon_history(
    coupon_id: int,
    limit: int = Query(100, ge=1, le=500),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    db: Session = Depends(get_db),
):
    entries = list_admin_actions(db, entity_type="coupon", entity_id=coupon_id, limit=limit)
    # deleted coupons keep their audit trail
    if not entries and get_coupon(db, coupon_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COUPON_NOT_FOUND)
    return [
        {
            "id": entry.id,
            "action": entry.action,
            "user_id": entry.user_id,
            "meta": audit_meta(entry),
            "created_at": entry.created_at,
        }
        for entry in entries
    ]
