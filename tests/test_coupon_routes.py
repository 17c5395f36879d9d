from datetime import timedelta
from types import SimpleNamespace

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core.clock import utcnow
from storefront.core.database import Base, get_db
from storefront.core.rate_limiter import InMemoryRateLimiterService
from storefront.deps import get_public_rate_limiter, require_admin_user
from storefront.models.admin_audit_log import AdminAuditLog
from storefront.models.coupon import Coupon
from storefront.models.customer import Customer
from storefront.models.order import Order
from storefront.routers.admin_coupons import router as admin_coupons_router
from storefront.routers.coupons import router as coupons_router
from tests.fixtures_data import HAPPY_PATH_ADMIN, MARGIN_GUARD_COUPON, SAVE20_COUPON, SUPPORT_ADMIN, VIP_EXCLUSIVE_COUPON


def _build_client(admin=HAPPY_PATH_ADMIN, limiter=None):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    db.add(Coupon(**SAVE20_COUPON))
    db.add(Coupon(**MARGIN_GUARD_COUPON))
    db.add(Coupon(**VIP_EXCLUSIVE_COUPON))
    db.commit()

    app = FastAPI()
    app.include_router(admin_coupons_router)
    app.include_router(coupons_router)

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[require_admin_user] = lambda: SimpleNamespace(**admin)
    limiter = limiter or InMemoryRateLimiterService(limit=1000, window_seconds=60)
    app.dependency_overrides[get_public_rate_limiter] = lambda: limiter

    client = TestClient(app)
    client.db = db
    return client


def test_validate_stacking_happy_path():
    client = _build_client()

    response = client.post(
        "/api/coupons/validate-stacking",
        json={"couponCode": "save20", "hasAffiliate": True, "hasVipDiscount": False, "orderSubtotal": 10000},
    )

    assert response.status_code == 200
    assert response.json() == {"valid": True, "blockAffiliateCommission": False, "blockVipDiscount": False}


def test_validate_stacking_reports_margin_adjustment():
    client = _build_client()

    response = client.post(
        "/api/coupons/validate-stacking",
        json={"couponCode": "HALFOFF", "orderSubtotal": 10000},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["valid"] is True
    assert body["adjustedDiscount"] == 4000
    assert body["blockAffiliateCommission"] is True


def test_validate_stacking_vip_conflict():
    client = _build_client()

    response = client.post(
        "/api/coupons/validate-stacking",
        json={"couponCode": "NOVIP10", "hasVipDiscount": True, "orderSubtotal": 10000},
    )

    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["message"] == "This coupon cannot be combined with VIP discounts"


def test_validate_stacking_requires_code():
    client = _build_client()

    response = client.post("/api/coupons/validate-stacking", json={"orderSubtotal": 10000})

    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Coupon code required"}


def test_validate_coupon_returns_discount():
    client = _build_client()

    response = client.post("/api/coupons/validate", json={"code": "save20", "orderAmount": 12345})

    assert response.status_code == 200
    coupon = response.json()["coupon"]
    assert coupon["code"] == "SAVE20"
    assert coupon["discountAmount"] == 2469
    assert coupon["minMarginPercent"] == 0


def test_validate_coupon_unknown_code_is_404():
    client = _build_client()

    response = client.post("/api/coupons/validate", json={"code": "NOPE", "orderAmount": 1000})

    assert response.status_code == 404
    assert response.json()["message"] == "Invalid coupon code"


def test_public_validation_is_rate_limited():
    client = _build_client(limiter=InMemoryRateLimiterService(limit=2, window_seconds=60))

    statuses = [
        client.post("/api/coupons/validate", json={"code": "SAVE20", "orderAmount": 1000}).status_code
        for _ in range(3)
    ]

    assert statuses == [200, 200, 429]


def test_admin_coupon_crud_flow():
    client = _build_client()

    created = client.post(
        "/api/admin/coupons",
        json={"code": "spring25", "type": "percentage", "value": 25, "minMarginPercent": 40, "autoExpireEnabled": True},
    )
    assert created.status_code == 201
    coupon_id = created.json()["id"]
    assert created.json()["code"] == "SPRING25"
    assert created.json()["autoExpireEnabled"] is True

    duplicate = client.post("/api/admin/coupons", json={"code": "SPRING25", "type": "fixed", "value": 100})
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Coupon code already exists"

    patched = client.patch(f"/api/admin/coupons/{coupon_id}", json={"description": "Spring sale"})
    assert patched.status_code == 200
    assert patched.json()["description"] == "Spring sale"

    listing = client.get("/api/admin/coupons")
    assert {entry["code"] for entry in listing.json()} >= {"SPRING25", "SAVE20"}

    deleted = client.delete(f"/api/admin/coupons/{coupon_id}")
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True

    actions = [entry.action for entry in client.db.query(AdminAuditLog).all()]
    assert actions == ["create_coupon", "update_coupon", "delete_coupon"]


def test_admin_rejects_percentage_over_100():
    client = _build_client()

    response = client.post("/api/admin/coupons", json={"code": "TOOMUCH", "type": "percentage", "value": 150})

    assert response.status_code == 422


def test_patch_missing_coupon_is_404():
    client = _build_client()

    response = client.patch("/api/admin/coupons/999", json={"active": False})

    assert response.status_code == 404


def test_support_role_cannot_mutate_coupons():
    client = _build_client(admin=SUPPORT_ADMIN)

    listing = client.get("/api/admin/coupons")
    created = client.post("/api/admin/coupons", json={"code": "NOPE", "type": "fixed", "value": 100})

    assert listing.status_code == 200
    assert created.status_code == 403


def test_disable_and_enable_coupon():
    client = _build_client()
    coupon = client.db.query(Coupon).filter(Coupon.code == "SAVE20").one()
    coupon.auto_expired_at = utcnow()
    client.db.commit()

    disabled = client.post(f"/api/coupons/admin/{coupon.id}/disable")
    enabled = client.post(f"/api/coupons/admin/{coupon.id}/enable")
    missing = client.post("/api/coupons/admin/999/enable")

    assert disabled.json()["active"] is False
    assert enabled.json()["active"] is True
    assert enabled.json()["autoExpiredAt"] is None
    assert missing.status_code == 404


def test_auto_expire_endpoint_reports_expired_codes():
    client = _build_client()
    coupon = client.db.query(Coupon).filter(Coupon.code == "SAVE20").one()
    coupon.auto_expire_enabled = True
    coupon.auto_expire_threshold = 100
    coupon.auto_expire_after_days = 1
    coupon.created_at = utcnow() - timedelta(days=2)
    client.db.commit()

    response = client.post("/api/coupons/admin/auto-expire")

    assert response.status_code == 200
    assert response.json() == {"success": True, "expiredCount": 1, "expiredCoupons": ["SAVE20"]}


def test_redemption_and_commission_decision():
    client = _build_client()
    customer = Customer(name="Lee", email="lee@example.com")
    client.db.add(customer)
    client.db.flush()
    order = Order(customer_id=customer.id, subtotal_cents=10000, total_cents=10000)
    client.db.add(order)
    client.db.commit()
    coupon = client.db.query(Coupon).filter(Coupon.code == "HALFOFF").one()

    created = client.post(
        "/api/coupons/redemptions",
        json={
            "couponId": coupon.id,
            "orderId": order.id,
            "customerId": customer.id,
            "discountAmount": 4000,
            "orderSubtotal": 10000,
            "orderTotal": 10000,
            "affiliateCode": "AFF9",
            "affiliateCommissionBlocked": True,
        },
    )
    decision = client.get(f"/api/coupons/orders/{order.id}/commission-blocked")
    missing_order = client.post(
        "/api/coupons/redemptions",
        json={"couponId": coupon.id, "orderId": 999, "discountAmount": 1, "orderSubtotal": 1, "orderTotal": 1},
    )

    assert created.status_code == 201
    assert created.json()["netRevenue"] == 6000
    assert decision.json() == {"orderId": order.id, "blockCommission": True}
    assert missing_order.status_code == 404


def test_analytics_endpoints():
    client = _build_client()

    performance = client.get("/api/coupons/admin/performance")
    analytics = client.get("/api/coupons/admin/analytics", params={"days": 7})

    assert performance.status_code == 200
    assert len(performance.json()) == 3
    assert analytics.json()["days"] == 7
    assert analytics.json()["summary"]["totalCoupons"] == 3


def test_coupon_history_survives_deletion():
    client = _build_client()
    coupon_id = client.post("/api/admin/coupons", json={"code": "BRIEF", "type": "fixed", "value": 500}).json()["id"]
    client.delete(f"/api/admin/coupons/{coupon_id}")

    history = client.get(f"/api/admin/coupons/{coupon_id}/history")

    assert history.status_code == 200
    assert [entry["action"] for entry in history.json()] == ["delete_coupon", "create_coupon"]
    assert history.json()[0]["userId"] == HAPPY_PATH_ADMIN["id"]
    assert history.json()[0]["meta"] == {"redemptions": 0}


def test_coupon_history_for_unknown_coupon_is_404():
    client = _build_client(admin=SUPPORT_ADMIN)

    response = client.get("/api/admin/coupons/999/history")

    assert response.status_code == 404


def test_patch_cannot_push_percentage_coupon_past_100():
    client = _build_client()
    percentage_id = client.post("/api/admin/coupons", json={"code": "PCT10", "type": "percentage", "value": 10}).json()["id"]
    fixed_id = client.post("/api/admin/coupons", json={"code": "FLAT20", "type": "fixed", "value": 2000}).json()["id"]

    raised_value = client.patch(f"/api/admin/coupons/{percentage_id}", json={"value": 150})
    switched_type = client.patch(f"/api/admin/coupons/{fixed_id}", json={"type": "percentage"})

    assert raised_value.status_code == 400
    assert raised_value.json()["detail"] == "Percentage coupons cannot exceed 100"
    assert switched_type.status_code == 400
    coupons = {coupon.code: coupon for coupon in client.db.query(Coupon).all()}
    assert coupons["PCT10"].value == 10
    assert coupons["FLAT20"].type == "fixed"


def test_patch_rejects_null_for_required_fields():
    client = _build_client()
    coupon_id = client.db.query(Coupon).filter(Coupon.code == "SAVE20").one().id

    response = client.patch(f"/api/admin/coupons/{coupon_id}", json={"active": None, "minMarginPercent": None})

    assert response.status_code == 400
    assert response.json()["detail"] == "Fields cannot be null: active, min_margin_percent"
    assert client.db.query(Coupon).filter(Coupon.code == "SAVE20").one().active is True


def test_blank_coupon_code_is_rejected():
    client = _build_client()
    coupon_id = client.db.query(Coupon).filter(Coupon.code == "SAVE20").one().id

    created = client.post("/api/admin/coupons", json={"code": "   ", "type": "fixed", "value": 100})
    renamed = client.patch(f"/api/admin/coupons/{coupon_id}", json={"code": "  "})

    assert created.status_code == 400
    assert created.json()["detail"] == "Coupon code cannot be blank"
    assert renamed.status_code == 400
    assert client.db.query(Coupon).filter(Coupon.code == "").count() == 0
