from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.schemas.coupons import CamelModel


# Public payloads keep every field optional so missing data maps to a 400
# "Missing required fields" instead of a validation error.
class TrackCartPayload(CamelModel):
    session_id: Optional[str] = None
    cart_data: Optional[dict[str, Any]] = None
    cart_value: Optional[int] = Field(default=None, ge=0)
    email: Optional[str] = None
    customer_id: Optional[int] = None
    coupon_code: Optional[str] = None
    affiliate_code: Optional[str] = None


class MarkCartRecoveredPayload(CamelModel):
    session_id: Optional[str] = None
    order_id: Optional[int] = None


class RecordFailedPaymentPayload(CamelModel):
    order_id: Optional[int] = None
    email: Optional[str] = None
    amount: Optional[int] = Field(default=None, ge=0)
    payment_intent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    customer_id: Optional[int] = None


class MarkPaymentRecoveredPayload(CamelModel):
    order_id: Optional[int] = None


class RecoveryStatsRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    total: int
    total_value: int
    emails_sent: int
    recovered: int
    recovered_value: int
    conversion_rate: float


class RecoveryAnalyticsRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    abandoned_carts: RecoveryStatsRead
    failed_payments: RecoveryStatsRead
    total_lost_revenue: int
    total_recovered_revenue: int
    overall_conversion_rate: float


class RecoveryCustomerRead(CamelModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None


class AbandonedCartRead(CamelModel):
    id: int
    session_id: str
    email: Optional[str] = None
    cart_data: Optional[dict[str, Any]] = None
    cart_value: int
    coupon_code: Optional[str] = None
    affiliate_code: Optional[str] = None
    last_activity_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    recovery_email_sent: int
    recovery_email_sent_at: Optional[datetime] = None
    recovered_at: Optional[datetime] = None
    recovered_order_id: Optional[int] = None
    created_at: Optional[datetime] = None
    customer: Optional[RecoveryCustomerRead] = None


class FailedPaymentRead(CamelModel):
    id: int
    order_id: int
    email: str
    amount: int
    payment_intent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    recovery_email_sent: int
    recovery_email_sent_at: Optional[datetime] = None
    recovered_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    customer: Optional[RecoveryCustomerRead] = None


class EmailBatchRead(CamelModel):
    sent: int
    errors: list[str] = Field(default_factory=list)


class RecoveryEmailRunResponse(CamelModel):
    abandoned_carts: EmailBatchRead
    failed_payments: EmailBatchRead
