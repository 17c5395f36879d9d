from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.config import StorefrontSettings
from storefront.core.database import Base
from storefront.email.base import EmailSendResult
from storefront.models.checkout_recovery import AbandonedCart, FailedPayment, RecoveryEvent
from storefront.models.customer import Customer
from storefront.models.order import Order
from storefront.services.checkout_recovery import CheckoutRecoveryService

NOW = datetime(2026, 6, 10, 12, 0, 0)
CART = {"items": [{"name": "Cold Plunge Tub", "quantity": 1}], "subtotal": 499900}


class _FakeEmailService:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send_email(self, db, message):
        if message.to in self.fail_for:
            return EmailSendResult(status="failed", error="mailbox unavailable")
        self.sent.append(message)
        return EmailSendResult(status="sent", provider_message_id=f"fake-{len(self.sent)}")


def _session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _service(emails=None):
    return CheckoutRecoveryService(settings=StorefrontSettings(site_name="Power Plunge"), emails=emails or _FakeEmailService())


def _order(db, total=499900):
    customer = Customer(name="Sam", email="sam@example.com")
    db.add(customer)
    db.flush()
    order = Order(customer_id=customer.id, subtotal_cents=total, total_cents=total)
    db.add(order)
    db.flush()
    return order


def _track(service, db, session_id="sess-1", email="sam@example.com", at=NOW):
    return service.track_cart_activity(
        db,
        session_id=session_id,
        cart_data=CART,
        cart_value=499900,
        email=email,
        now=at,
    )


def test_tracking_same_session_updates_open_cart():
    db = _session()
    service = _service()

    first = _track(service, db)
    second = service.track_cart_activity(
        db, session_id="sess-1", cart_data={"items": []}, cart_value=100, now=NOW + timedelta(minutes=5)
    )

    assert first.id == second.id
    assert second.cart_value == 100
    assert second.email == "sam@example.com"
    assert db.query(AbandonedCart).count() == 1


def test_detect_abandoned_after_inactivity_threshold():
    db = _session()
    service = _service()
    stale = _track(service, db, session_id="stale", at=NOW - timedelta(minutes=90))
    fresh = _track(service, db, session_id="fresh", at=NOW - timedelta(minutes=10))
    _track(service, db, session_id="anon", email=None, at=NOW - timedelta(hours=3))

    detected = service.detect_abandoned_carts(db, now=NOW)

    assert [cart.id for cart in detected] == [stale.id]
    assert stale.abandoned_at == NOW
    assert service.detect_abandoned_carts(db, now=NOW + timedelta(minutes=30)) == []
    # an hour later only the fresh cart crosses the threshold; stale is not stamped twice
    assert [cart.id for cart in service.detect_abandoned_carts(db, now=NOW + timedelta(hours=1))] == [fresh.id]
    assert stale.abandoned_at == NOW


def test_new_activity_reopens_abandoned_cart():
    db = _session()
    service = _service()
    cart = _track(service, db, at=NOW - timedelta(hours=2))
    service.detect_abandoned_carts(db, now=NOW)

    _track(service, db, at=NOW + timedelta(minutes=1))

    assert cart.abandoned_at is None


def test_recovery_email_schedule_for_abandoned_carts():
    db = _session()
    emails = _FakeEmailService()
    service = _service(emails)
    cart = _track(service, db, at=NOW - timedelta(hours=2))
    service.detect_abandoned_carts(db, now=NOW)

    assert service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(hours=3)).sent == 0

    first = service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(hours=4))
    db.refresh(cart)
    assert first.sent == 1
    assert cart.recovery_email_sent == 1
    assert "Don't forget your items at Power Plunge!" == emails.sent[0].subject
    assert "Cold Plunge Tub x 1" in emails.sent[0].html

    assert service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(hours=20)).sent == 0

    second = service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(hours=30))
    db.refresh(cart)
    assert second.sent == 1
    assert cart.recovery_email_sent == 2
    assert emails.sent[1].subject == "We miss you! Your cart is still waiting"

    assert service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(days=5)).sent == 0
    sent_events = db.query(RecoveryEvent).filter(RecoveryEvent.action == "email_sent").count()
    assert sent_events == 2


def test_failed_sends_are_collected_not_raised():
    db = _session()
    service = _service(_FakeEmailService(fail_for={"sam@example.com"}))
    cart = _track(service, db, at=NOW - timedelta(hours=2))
    service.detect_abandoned_carts(db, now=NOW)

    batch = service.send_abandoned_cart_recovery_emails(db, now=NOW + timedelta(hours=5))

    db.refresh(cart)
    assert batch.sent == 0
    assert batch.errors == [f"Cart {cart.id}: mailbox unavailable"]
    assert cart.recovery_email_sent == 0


def test_mark_cart_recovered_records_revenue():
    db = _session()
    service = _service()
    order = _order(db)
    _track(service, db)

    cart = service.mark_cart_recovered(db, session_id="sess-1", order_id=order.id, now=NOW)
    db.flush()

    assert cart.recovered_at == NOW
    event = db.query(RecoveryEvent).one()
    assert event.action == "recovered"
    assert event.revenue_recovered == 499900
    assert service.mark_cart_recovered(db, session_id="sess-1", order_id=order.id) is None


def test_failed_payment_upserts_by_order():
    db = _session()
    service = _service()
    order = _order(db)

    first = service.record_failed_payment(db, order_id=order.id, email="sam@example.com", amount=499900, failure_code="card_declined")
    second = service.record_failed_payment(
        db, order_id=order.id, email="sam@example.com", amount=499900, failure_code="insufficient_funds"
    )

    assert first.id == second.id
    assert second.failure_code == "insufficient_funds"
    assert db.query(FailedPayment).count() == 1


def test_failed_payment_emails_follow_schedule():
    db = _session()
    emails = _FakeEmailService()
    service = _service(emails)
    order = _order(db)
    payment = service.record_failed_payment(
        db, order_id=order.id, email="sam@example.com", amount=12345, failure_reason="Card <declined>"
    )
    payment.created_at = NOW
    db.flush()

    assert service.send_failed_payment_recovery_emails(db, now=NOW + timedelta(hours=1)).sent == 0
    assert service.send_failed_payment_recovery_emails(db, now=NOW + timedelta(hours=4)).sent == 1
    assert "$123.45" in emails.sent[0].html
    assert "Card &lt;declined&gt;" in emails.sent[0].html


def test_expire_old_recoveries_is_guarded():
    db = _session()
    service = _service()
    order = _order(db)
    payment = service.record_failed_payment(db, order_id=order.id, email="sam@example.com", amount=100)
    payment.created_at = NOW - timedelta(days=8)
    db.flush()

    assert service.expire_old_recoveries(db, now=NOW) == 1
    assert service.expire_old_recoveries(db, now=NOW + timedelta(days=1)) == 0

    db.refresh(payment)
    assert payment.expired_at == NOW
    assert db.query(RecoveryEvent).filter(RecoveryEvent.action == "expired").count() == 1
    assert service.get_failed_payments_for_recovery(db, now=NOW) == []


def test_recovery_analytics_and_lists():
    db = _session()
    service = _service()
    order = _order(db)
    cart = _track(service, db, at=NOW - timedelta(hours=2))
    cart.created_at = NOW - timedelta(hours=2)
    service.detect_abandoned_carts(db, now=NOW)
    service.mark_cart_recovered(db, session_id="sess-1", order_id=order.id, now=NOW)
    payment = service.record_failed_payment(db, order_id=order.id, email="sam@example.com", amount=1000)
    payment.created_at = NOW - timedelta(days=1)
    db.flush()

    analytics = service.get_recovery_analytics(db, 30, now=NOW)

    assert analytics.abandoned_carts.total == 1
    assert analytics.abandoned_carts.recovered == 1
    assert analytics.abandoned_carts.conversion_rate == 100.0
    assert analytics.failed_payments.total == 1
    assert analytics.failed_payments.recovered == 0
    assert analytics.total_lost_revenue == 499900 + 1000
    assert analytics.overall_conversion_rate == 50.0

    carts = service.get_abandoned_carts_list(db, 10)
    assert carts[0][0].id == cart.id
    assert service.get_failed_payments_list(db, 10)[0][0].id == payment.id


def test_run_recovery_email_job_detects_then_sends():
    db = _session()
    emails = _FakeEmailService()
    service = _service(emails)
    _track(service, db, at=NOW - timedelta(hours=6))
    db.commit()

    results = service.run_recovery_email_job(db, now=NOW)

    # detected just now, so the first email is not due yet
    assert results["abandoned_carts"].sent == 0
    later = service.run_recovery_email_job(db, now=NOW + timedelta(hours=4))
    assert later["abandoned_carts"].sent == 1
    assert later["failed_payments"].sent == 0
