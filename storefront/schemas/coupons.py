from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

CouponType = Literal["percentage", "fixed", "free_shipping"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CouponFields(CamelModel):
    description: Optional[str] = None
    min_order_amount: Optional[int] = Field(default=None, ge=0)
    max_discount_amount: Optional[int] = Field(default=None, ge=0)
    max_redemptions: Optional[int] = Field(default=None, ge=0)
    per_customer_limit: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    block_affiliate_commission: Optional[bool] = None
    block_vip_discount: Optional[bool] = None
    min_margin_percent: Optional[int] = Field(default=None, ge=0, le=100)
    auto_expire_enabled: Optional[bool] = None
    auto_expire_threshold: Optional[int] = Field(default=None, ge=0)
    auto_expire_after_days: Optional[int] = Field(default=None, ge=1)


class CouponCreate(CouponFields):
    code: str = Field(..., min_length=1, max_length=64)
    type: CouponType = "percentage"
    value: int = Field(..., ge=0)
    active: bool = True

    @model_validator(mode="after")
    def _percentage_bounds(self):
        if self.type == "percentage" and self.value > 100:
            raise ValueError("Percentage coupons cannot exceed 100")
        return self


class CouponUpdate(CouponFields):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64)
    type: Optional[CouponType] = None
    value: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None

    @model_validator(mode="after")
    def _percentage_bounds(self):
        if self.type == "percentage" and self.value is not None and self.value > 100:
            raise ValueError("Percentage coupons cannot exceed 100")
        return self


class CouponRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    code: str
    description: Optional[str] = None
    type: str
    value: int
    min_order_amount: Optional[int] = None
    max_discount_amount: Optional[int] = None
    max_redemptions: Optional[int] = None
    per_customer_limit: Optional[int] = None
    times_used: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: bool
    block_affiliate_commission: bool
    block_vip_discount: bool
    min_margin_percent: int
    auto_expire_enabled: bool
    auto_expire_threshold: int
    auto_expire_after_days: Optional[int] = None
    auto_expired_at: Optional[datetime] = None
    created_at: datetime


class CouponDeleteResponse(CamelModel):
    deleted: bool
    soft_disabled: bool
    redemption_count: int
    message: str


class StackingRequest(CamelModel):
    coupon_code: Optional[str] = None
    has_affiliate: bool = False
    has_vip_discount: bool = False
    order_subtotal: int = 0


class StackingResponse(CamelModel):
    valid: bool
    block_affiliate_commission: bool
    block_vip_discount: bool
    message: Optional[str] = None
    adjusted_discount: Optional[int] = None


class ValidateCouponPayload(CamelModel):
    code: Optional[str] = None
    order_amount: int = 0


class ValidatedCoupon(CamelModel):
    id: int
    code: str
    type: str
    value: int
    discount_amount: int
    block_affiliate_commission: bool
    block_vip_discount: bool
    min_margin_percent: int


class ValidateCouponResponse(CamelModel):
    valid: bool
    coupon: ValidatedCoupon


class AutoExpireResponse(CamelModel):
    success: bool
    expired_count: int
    expired_coupons: list[str]


class RedemptionCreate(CamelModel):
    coupon_id: int
    order_id: int
    customer_id: Optional[int] = None
    discount_amount: int = Field(..., ge=0)
    order_subtotal: int = Field(..., ge=0)
    order_total: int = Field(..., ge=0)
    affiliate_code: Optional[str] = None
    affiliate_commission_blocked: bool = False


class RedemptionRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    coupon_id: int
    order_id: int
    customer_id: Optional[int] = None
    discount_amount: int
    order_subtotal: int
    order_total: int
    net_revenue: int
    affiliate_code: Optional[str] = None
    affiliate_commission_blocked: bool
    redeemed_at: datetime


class CommissionBlockedResponse(CamelModel):
    order_id: int
    block_commission: bool


class CouponPerformanceRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    coupon_id: int
    code: str
    description: Optional[str] = None
    type: str
    value: int
    active: bool
    times_used: int
    total_order_revenue: int
    total_discount_given: int
    net_revenue: int
    average_order_value: float
    affiliate_overlap: int
    affiliate_commission_blocked: int
    margin_percent: float
    is_underperforming: bool
    auto_expire_enabled: bool
    auto_expired_at: Optional[datetime] = None
    created_at: datetime


class CouponAnalyticsSummaryRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    total_coupons: int
    active_coupons: int
    total_redemptions: int
    total_discount_cost: int
    total_net_revenue: int
    affiliate_overlap_count: int
    average_margin_percent: float
    underperforming_count: int


class CouponAnalyticsResponse(CamelModel):
    days: int
    summary: CouponAnalyticsSummaryRead
    coupons: list[CouponPerformanceRead] = Field(default_factory=list)


class CouponHistoryEntry(CamelModel):
    id: int
    action: str
    user_id: int
    meta: dict[str, Any]
    created_at: Optional[datetime] = None
