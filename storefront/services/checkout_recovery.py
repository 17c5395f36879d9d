from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from storefront.core.clock import utcnow
from storefront.core.config import StorefrontSettings, get_settings
from storefront.email.base import EmailMessage
from storefront.email.service import EmailService, email_service
from storefront.models.checkout_recovery import AbandonedCart, FailedPayment, RecoveryEvent
from storefront.models.customer import Customer
from storefront.services.recovery_templates import abandoned_cart_email, failed_payment_email

logger = logging.getLogger(__name__)
RECOVERY_PREFIX = "[RECOVERY]"


@dataclass
class RecoveryStats:
    total: int = 0
    total_value: int = 0
    emails_sent: int = 0
    recovered: int = 0
    recovered_value: int = 0

    @property
    def conversion_rate(self) -> float:
        return (self.recovered / self.total) * 100 if self.total > 0 else 0.0


@dataclass
class RecoveryAnalytics:
    abandoned_carts: RecoveryStats
    failed_payments: RecoveryStats

    @property
    def total_lost_revenue(self) -> int:
        return self.abandoned_carts.total_value + self.failed_payments.total_value

    @property
    def total_recovered_revenue(self) -> int:
        return self.abandoned_carts.recovered_value + self.failed_payments.recovered_value

    @property
    def overall_conversion_rate(self) -> float:
        total = self.abandoned_carts.total + self.failed_payments.total
        recovered = self.abandoned_carts.recovered + self.failed_payments.recovered
        return (recovered / total) * 100 if total > 0 else 0.0


@dataclass
class EmailBatchResult:
    sent: int = 0
    errors: list[str] = field(default_factory=list)


class CheckoutRecoveryService:
    def __init__(
        self,
        settings: StorefrontSettings | None = None,
        emails: EmailService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.emails = emails or email_service

    # -- cart tracking -----------------------------------------------------

    def _open_cart(self, db: Session, session_id: str) -> AbandonedCart | None:
        return (
            db.query(AbandonedCart)
            .filter(AbandonedCart.session_id == session_id, AbandonedCart.recovered_at.is_(None))
            .order_by(AbandonedCart.id.desc())
            .first()
        )

    def track_cart_activity(
        self,
        db: Session,
        *,
        session_id: str,
        cart_data: dict[str, Any],
        cart_value: int,
        email: str | None = None,
        customer_id: int | None = None,
        coupon_code: str | None = None,
        affiliate_code: str | None = None,
        now: datetime | None = None,
    ) -> AbandonedCart:
        now = now or utcnow()
        cart = self._open_cart(db, session_id)
        if cart is None:
            cart = AbandonedCart(
                session_id=session_id,
                cart_data=cart_data,
                cart_value=cart_value,
                email=email,
                customer_id=customer_id,
                coupon_code=coupon_code,
                affiliate_code=affiliate_code,
                last_activity_at=now,
                recovery_email_sent=0,
            )
            db.add(cart)
        else:
            cart.cart_data = cart_data
            cart.cart_value = cart_value
            cart.email = email or cart.email
            cart.customer_id = customer_id or cart.customer_id
            cart.coupon_code = coupon_code
            cart.affiliate_code = affiliate_code
            cart.last_activity_at = now
            # fresh activity reopens a cart previously marked abandoned
            cart.abandoned_at = None
        db.flush()
        return cart

    def mark_cart_recovered(
        self,
        db: Session,
        *,
        session_id: str,
        order_id: int,
        now: datetime | None = None,
    ) -> AbandonedCart | None:
        cart = self._open_cart(db, session_id)
        if cart is None:
            return None

        cart.recovered_at = now or utcnow()
        cart.recovered_order_id = order_id
        self.record_recovery_event(
            db,
            event_type="abandoned_cart",
            source_id=cart.id,
            action="recovered",
            order_id=order_id,
            revenue_recovered=cart.cart_value,
        )
        db.flush()
        logger.info("%s cart recovered session=%s order=%s", RECOVERY_PREFIX, session_id, order_id)
        return cart

    def detect_abandoned_carts(self, db: Session, *, now: datetime | None = None) -> list[AbandonedCart]:
        now = now or utcnow()
        threshold = now - timedelta(minutes=self.settings.cart_abandonment_minutes)
        candidates = (
            db.query(AbandonedCart)
            .filter(
                AbandonedCart.recovered_at.is_(None),
                AbandonedCart.abandoned_at.is_(None),
                AbandonedCart.last_activity_at < threshold,
                AbandonedCart.email.isnot(None),
            )
            .all()
        )

        detected: list[AbandonedCart] = []
        for cart in candidates:
            result = db.execute(
                update(AbandonedCart)
                .where(AbandonedCart.id == cart.id, AbandonedCart.abandoned_at.is_(None))
                .values(abandoned_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.refresh(cart)
                detected.append(cart)

        db.flush()
        logger.info("%s detected abandoned carts count=%s", RECOVERY_PREFIX, len(detected))
        return detected

    def get_abandoned_carts_for_recovery(self, db: Session, *, now: datetime | None = None) -> list[AbandonedCart]:
        interval_ago = (now or utcnow()) - timedelta(hours=self.settings.recovery_email_interval_hours)
        return (
            db.query(AbandonedCart)
            .filter(
                AbandonedCart.recovered_at.is_(None),
                AbandonedCart.abandoned_at.isnot(None),
                AbandonedCart.email.isnot(None),
                AbandonedCart.recovery_email_sent < self.settings.max_recovery_emails,
                or_(
                    AbandonedCart.recovery_email_sent_at.is_(None),
                    AbandonedCart.recovery_email_sent_at < interval_ago,
                ),
            )
            .all()
        )

    def mark_recovery_email_sent(self, db: Session, cart_id: int, *, now: datetime | None = None) -> None:
        db.execute(
            update(AbandonedCart)
            .where(AbandonedCart.id == cart_id)
            .values(
                recovery_email_sent=AbandonedCart.recovery_email_sent + 1,
                recovery_email_sent_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.record_recovery_event(db, event_type="abandoned_cart", source_id=cart_id, action="email_sent")

    # -- failed payments ---------------------------------------------------

    def record_failed_payment(
        self,
        db: Session,
        *,
        order_id: int,
        email: str,
        amount: int,
        payment_intent_id: str | None = None,
        failure_reason: str | None = None,
        failure_code: str | None = None,
        customer_id: int | None = None,
    ) -> FailedPayment:
        payment = db.query(FailedPayment).filter(FailedPayment.order_id == order_id).first()
        if payment is None:
            payment = FailedPayment(
                order_id=order_id,
                email=email,
                amount=amount,
                payment_intent_id=payment_intent_id,
                failure_reason=failure_reason,
                failure_code=failure_code,
                customer_id=customer_id,
                recovery_email_sent=0,
            )
            db.add(payment)
        else:
            payment.payment_intent_id = payment_intent_id
            payment.failure_reason = failure_reason
            payment.failure_code = failure_code
        db.flush()
        logger.info("%s failed payment recorded order=%s code=%s", RECOVERY_PREFIX, order_id, failure_code)
        return payment

    def mark_payment_recovered(
        self,
        db: Session,
        *,
        order_id: int,
        now: datetime | None = None,
    ) -> FailedPayment | None:
        payment = (
            db.query(FailedPayment)
            .filter(FailedPayment.order_id == order_id, FailedPayment.recovered_at.is_(None))
            .first()
        )
        if payment is None:
            return None

        payment.recovered_at = now or utcnow()
        self.record_recovery_event(
            db,
            event_type="failed_payment",
            source_id=payment.id,
            action="recovered",
            order_id=order_id,
            revenue_recovered=payment.amount,
        )
        db.flush()
        return payment

    def get_failed_payments_for_recovery(self, db: Session, *, now: datetime | None = None) -> list[FailedPayment]:
        now = now or utcnow()
        interval_ago = now - timedelta(hours=self.settings.recovery_email_interval_hours)
        expiry_cutoff = now - timedelta(days=self.settings.failed_payment_expiry_days)
        return (
            db.query(FailedPayment)
            .filter(
                FailedPayment.recovered_at.is_(None),
                FailedPayment.expired_at.is_(None),
                FailedPayment.created_at >= expiry_cutoff,
                FailedPayment.recovery_email_sent < self.settings.max_recovery_emails,
                or_(
                    FailedPayment.recovery_email_sent_at.is_(None),
                    FailedPayment.recovery_email_sent_at < interval_ago,
                ),
            )
            .all()
        )

    def mark_failed_payment_email_sent(self, db: Session, payment_id: int, *, now: datetime | None = None) -> None:
        db.execute(
            update(FailedPayment)
            .where(FailedPayment.id == payment_id)
            .values(
                recovery_email_sent=FailedPayment.recovery_email_sent + 1,
                recovery_email_sent_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.record_recovery_event(db, event_type="failed_payment", source_id=payment_id, action="email_sent")

    def expire_old_recoveries(self, db: Session, *, now: datetime | None = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(days=self.settings.failed_payment_expiry_days)
        stale = (
            db.query(FailedPayment)
            .filter(
                FailedPayment.recovered_at.is_(None),
                FailedPayment.expired_at.is_(None),
                FailedPayment.created_at < cutoff,
            )
            .all()
        )

        expired = 0
        for payment in stale:
            result = db.execute(
                update(FailedPayment)
                .where(FailedPayment.id == payment.id, FailedPayment.expired_at.is_(None))
                .values(expired_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                expired += 1
                self.record_recovery_event(
                    db,
                    event_type="failed_payment",
                    source_id=payment.id,
                    action="expired",
                    order_id=payment.order_id,
                )

        db.flush()
        logger.info("%s expired failed payments count=%s", RECOVERY_PREFIX, expired)
        return expired

    # -- events & reporting ------------------------------------------------

    def record_recovery_event(
        self,
        db: Session,
        *,
        event_type: str,
        source_id: int,
        action: str,
        order_id: int | None = None,
        revenue_recovered: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RecoveryEvent:
        event = RecoveryEvent(
            event_type=event_type,
            source_id=source_id,
            action=action,
            order_id=order_id,
            revenue_recovered=revenue_recovered or 0,
            metadata_json=metadata,
        )
        db.add(event)
        return event

    def get_recovery_analytics(self, db: Session, days: int = 30, *, now: datetime | None = None) -> RecoveryAnalytics:
        since = (now or utcnow()) - timedelta(days=days)
        carts = db.query(AbandonedCart).filter(AbandonedCart.created_at >= since).all()
        payments = db.query(FailedPayment).filter(FailedPayment.created_at >= since).all()

        cart_stats = RecoveryStats()
        for cart in carts:
            cart_stats.emails_sent += int(cart.recovery_email_sent or 0)
            if cart.abandoned_at is not None:
                cart_stats.total += 1
                cart_stats.total_value += int(cart.cart_value or 0)
            if cart.recovered_at is not None:
                cart_stats.recovered += 1
                cart_stats.recovered_value += int(cart.cart_value or 0)

        payment_stats = RecoveryStats(total=len(payments))
        for payment in payments:
            payment_stats.total_value += int(payment.amount or 0)
            payment_stats.emails_sent += int(payment.recovery_email_sent or 0)
            if payment.recovered_at is not None:
                payment_stats.recovered += 1
                payment_stats.recovered_value += int(payment.amount or 0)

        return RecoveryAnalytics(abandoned_carts=cart_stats, failed_payments=payment_stats)

    def get_abandoned_carts_list(self, db: Session, limit: int = 50) -> list[tuple[AbandonedCart, Customer | None]]:
        return (
            db.query(AbandonedCart, Customer)
            .outerjoin(Customer, Customer.id == AbandonedCart.customer_id)
            .filter(AbandonedCart.abandoned_at.isnot(None))
            .order_by(AbandonedCart.abandoned_at.desc())
            .limit(limit)
            .all()
        )

    def get_failed_payments_list(self, db: Session, limit: int = 50) -> list[tuple[FailedPayment, Customer | None]]:
        return (
            db.query(FailedPayment, Customer)
            .outerjoin(Customer, Customer.id == FailedPayment.customer_id)
            .order_by(FailedPayment.created_at.desc(), FailedPayment.id.desc())
            .limit(limit)
            .all()
        )

    # -- recovery email sweep ----------------------------------------------

    def _email_due(self, emails_sent: int, elapsed: timedelta) -> bool:
        schedule = (self.settings.first_recovery_email_hours, self.settings.second_recovery_email_hours)
        if emails_sent >= min(len(schedule), self.settings.max_recovery_emails):
            return False
        return elapsed >= timedelta(hours=schedule[emails_sent])

    def send_abandoned_cart_recovery_emails(self, db: Session, *, now: datetime | None = None) -> EmailBatchResult:
        now = now or utcnow()
        batch = EmailBatchResult()
        for cart in self.get_abandoned_carts_for_recovery(db, now=now):
            emails_sent = int(cart.recovery_email_sent or 0)
            if not self._email_due(emails_sent, now - cart.abandoned_at):
                continue

            subject, html = abandoned_cart_email(
                self.settings,
                session_id=cart.session_id,
                cart_data=cart.cart_data,
                cart_value=cart.cart_value,
                attempt=emails_sent,
            )
            try:
                result = self.emails.send_email(
                    db,
                    EmailMessage(to=cart.email, subject=subject, html=html, category="abandoned_cart"),
                )
            except Exception as exc:
                logger.exception("%s abandoned cart email crashed cart=%s", RECOVERY_PREFIX, cart.id)
                batch.errors.append(f"Cart {cart.id}: {exc}")
                continue

            if not result.success:
                batch.errors.append(f"Cart {cart.id}: {result.error}")
                continue

            self.mark_recovery_email_sent(db, cart.id, now=now)
            batch.sent += 1
            logger.info(
                "%s sent abandoned cart email to=%s attempt=%s",
                RECOVERY_PREFIX,
                cart.email,
                emails_sent + 1,
            )

        db.flush()
        return batch

    def send_failed_payment_recovery_emails(self, db: Session, *, now: datetime | None = None) -> EmailBatchResult:
        now = now or utcnow()
        batch = EmailBatchResult()

        for payment in self.get_failed_payments_for_recovery(db, now=now):
            emails_sent = int(payment.recovery_email_sent or 0)
            if not self._email_due(emails_sent, now - payment.created_at):
                continue

            subject, html = failed_payment_email(
                self.settings,
                amount=payment.amount,
                failure_reason=payment.failure_reason,
            )
            try:
                result = self.emails.send_email(
                    db,
                    EmailMessage(to=payment.email, subject=subject, html=html, category="failed_payment"),
                )
            except Exception as exc:
                logger.exception("%s failed payment email crashed payment=%s", RECOVERY_PREFIX, payment.id)
                batch.errors.append(f"Payment {payment.id}: {exc}")
                continue

            if not result.success:
                batch.errors.append(f"Payment {payment.id}: {result.error}")
                continue

            self.mark_failed_payment_email_sent(db, payment.id, now=now)
            batch.sent += 1
            logger.info(
                "%s sent failed payment email to=%s attempt=%s",
                RECOVERY_PREFIX,
                payment.email,
                emails_sent + 1,
            )

        db.flush()
        return batch

    def run_recovery_email_job(self, db: Session, *, now: datetime | None = None) -> dict[str, EmailBatchResult]:
        now = now or utcnow()
        self.detect_abandoned_carts(db, now=now)
        results = {
            "abandoned_carts": self.send_abandoned_cart_recovery_emails(db, now=now),
            "failed_payments": self.send_failed_payment_recovery_emails(db, now=now),
        }
        db.commit()
        return results