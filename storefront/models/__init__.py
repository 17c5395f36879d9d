from storefront.models.customer import Customer
from storefront.models.order import Order
from storefront.models.coupon import Coupon, CouponRedemption
from storefront.models.checkout_recovery import AbandonedCart, FailedPayment, RecoveryEvent
from storefront.models.email_log import EmailLog
from storefront.models.admin_user import AdminUser
from storefront.models.admin_audit_log import AdminAuditLog
from storefront.models.admin_login_attempt import AdminLoginAttempt
