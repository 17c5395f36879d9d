from __future__ import annotations

import logging
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storefront.core.config import StorefrontSettings, get_settings
from storefront.core.database import get_db
from storefront.core.request_context import set_request_context
from storefront.deps import enforce_public_rate_limit, require_role
from storefront.models.admin_user import AdminUser
from storefront.models.customer import Customer
from storefront.schemas.recovery import (
    AbandonedCartRead,
    FailedPaymentRead,
    MarkCartRecoveredPayload,
    MarkPaymentRecoveredPayload,
    RecordFailedPaymentPayload,
    RecoveryAnalyticsRead,
    RecoveryEmailRunResponse,
    TrackCartPayload,
)
from storefront.services.checkout_recovery import CheckoutRecoveryService

router = APIRouter(prefix="/api/recovery", tags=["recovery"])
logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing required fields"


def get_recovery_service(settings: StorefrontSettings = Depends(get_settings)) -> CheckoutRecoveryService:
    return CheckoutRecoveryService(settings=settings)


def _missing_fields() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_FIELDS)


def _customer_payload(customer: Customer | None) -> dict[str, Any] | None:
    if customer is None:
        return None
    return {"id": customer.id, "name": customer.name, "email": customer.email}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/analytics", response_model=RecoveryAnalyticsRead)
def recovery_analytics(
    days: int | None = Query(None, ge=1, le=365),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    settings: StorefrontSettings = Depends(get_settings),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    analytics = service.get_recovery_analytics(db, days or settings.analytics_window_days)
    stats = {}
    for name in ("abandoned_carts", "failed_payments"):
        entry = getattr(analytics, name)
        stats[name] = {
            "total": entry.total,
            "total_value": entry.total_value,
            "emails_sent": entry.emails_sent,
            "recovered": entry.recovered,
            "recovered_value": entry.recovered_value,
            "conversion_rate": entry.conversion_rate,
        }
    return {
        **stats,
        "total_lost_revenue": analytics.total_lost_revenue,
        "total_recovered_revenue": analytics.total_recovered_revenue,
        "overall_conversion_rate": analytics.overall_conversion_rate,
    }


@router.get("/abandoned-carts", response_model=List[AbandonedCartRead])
def list_abandoned_carts(
    limit: int = Query(50, ge=1, le=500),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    return [
        {
            "id": cart.id,
            "session_id": cart.session_id,
            "email": cart.email,
            "cart_data": cart.cart_data,
            "cart_value": cart.cart_value,
            "coupon_code": cart.coupon_code,
            "affiliate_code": cart.affiliate_code,
            "last_activity_at": cart.last_activity_at,
            "abandoned_at": cart.abandoned_at,
            "recovery_email_sent": int(cart.recovery_email_sent or 0),
            "recovery_email_sent_at": cart.recovery_email_sent_at,
            "recovered_at": cart.recovered_at,
            "recovered_order_id": cart.recovered_order_id,
            "created_at": cart.created_at,
            "customer": _customer_payload(customer),
        }
        for cart, customer in service.get_abandoned_carts_list(db, limit)
    ]


@router.get("/failed-payments", response_model=List[FailedPaymentRead])
def list_failed_payments(
    limit: int = Query(50, ge=1, le=500),
    _user: AdminUser = Depends(require_role(["admin", "support"])),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    return [
        {
            "id": payment.id,
            "order_id": payment.order_id,
            "email": payment.email,
            "amount": payment.amount,
            "payment_intent_id": payment.payment_intent_id,
            "failure_reason": payment.failure_reason,
            "failure_code": payment.failure_code,
            "recovery_email_sent": int(payment.recovery_email_sent or 0),
            "recovery_email_sent_at": payment.recovery_email_sent_at,
            "recovered_at": payment.recovered_at,
            "expired_at": payment.expired_at,
            "created_at": payment.created_at,
            "customer": _customer_payload(customer),
        }
        for payment, customer in service.get_failed_payments_list(db, limit)
    ]


@router.post("/detect-abandoned")
def detect_abandoned(
    _user: AdminUser = Depends(require_role(["admin"])),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    detected = service.detect_abandoned_carts(db)
    db.commit()
    return {"success": True, "detected": len(detected)}


@router.post("/expire-old")
def expire_old(
    _user: AdminUser = Depends(require_role(["admin"])),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    expired = service.expire_old_recoveries(db)
    db.commit()
    return {"success": True, "expired": expired}


@router.post("/send-recovery-emails", response_model=RecoveryEmailRunResponse)
def send_recovery_emails(
    _user: AdminUser = Depends(require_role(["admin"])),
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    results = service.run_recovery_email_job(db)
    return {
        name: {"sent": batch.sent, "errors": batch.errors}
        for name, batch in results.items()
    }


# ---------------------------------------------------------------------------
# Public (checkout)
# ---------------------------------------------------------------------------


@router.post("/track-cart", dependencies=[Depends(enforce_public_rate_limit)])
def track_cart(
    payload: TrackCartPayload,
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    if not payload.session_id or payload.cart_data is None or payload.cart_value is None:
        raise _missing_fields()
    set_request_context(session_id=payload.session_id)

    cart = service.track_cart_activity(
        db,
        session_id=payload.session_id,
        cart_data=payload.cart_data,
        cart_value=payload.cart_value,
        email=(payload.email or "").strip().lower() or None,
        customer_id=payload.customer_id,
        coupon_code=payload.coupon_code,
        affiliate_code=payload.affiliate_code,
    )
    db.commit()
    return {"success": True, "cartId": cart.id}


@router.post("/mark-cart-recovered", dependencies=[Depends(enforce_public_rate_limit)])
def mark_cart_recovered(
    payload: MarkCartRecoveredPayload,
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    if not payload.session_id or payload.order_id is None:
        raise _missing_fields()
    set_request_context(session_id=payload.session_id)

    cart = service.mark_cart_recovered(db, session_id=payload.session_id, order_id=payload.order_id)
    db.commit()
    return {"success": True, "recovered": cart is not None}


@router.post("/record-failed-payment", dependencies=[Depends(enforce_public_rate_limit)])
def record_failed_payment(
    payload: RecordFailedPaymentPayload,
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    if payload.order_id is None or not payload.email or payload.amount is None:
        raise _missing_fields()

    payment = service.record_failed_payment(
        db,
        order_id=payload.order_id,
        email=payload.email.strip().lower(),
        amount=payload.amount,
        payment_intent_id=payload.payment_intent_id,
        failure_reason=payload.failure_reason,
        failure_code=payload.failure_code,
        customer_id=payload.customer_id,
    )
    db.commit()
    return {"success": True, "failedPaymentId": payment.id}


@router.post("/mark-payment-recovered", dependencies=[Depends(enforce_public_rate_limit)])
def mark_payment_recovered(
    payload: MarkPaymentRecoveredPayload,
    service: CheckoutRecoveryService = Depends(get_recovery_service),
    db: Session = Depends(get_db),
):
    if payload.order_id is None:
        raise _missing_fields()

    payment = service.mark_payment_recovered(db, order_id=payload.order_id)
    db.commit()
    return {"success": True, "recovered": payment is not None}
