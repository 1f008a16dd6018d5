"""
Pydantic Schemas for Request/Response Validation

Checkout payload validation (structural rules of the order pipeline),
coupon preview, status updates and the response envelopes:

    success: {"success": true, "data": {...}}
    failure: {"success": false, "error": {"code", "message", "details"}}

Version: 1.0.0
"""

import re
from collections import Counter
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from menumaker.domain import (
    DeliveryType,
    DiscountType,
    OrderStatus,
    UsageLimitType,
)

PHONE_PATTERN = re.compile(r"^\+?[0-9]{1,15}$")
EMAIL_PATTERN = re.compile(r"^[\w\.\+-]+@[\w\.-]+\.\w+$")

MAX_ORDER_LINES = 50
MAX_LINE_QUANTITY = 100


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderLineCreate(BaseModel):
    """Single line in a cart."""
    dish_id: str = Field(..., min_length=1, max_length=36, examples=["0b8e6c1e-dish"])
    quantity: int = Field(..., ge=1, le=MAX_LINE_QUANTITY, examples=[2])


class OrderCreate(BaseModel):
    """Checkout request: the cart submitted for pricing and creation."""

    business_id: str = Field(..., min_length=1, max_length=36)

    # Customer Info
    customer_name: str = Field(..., max_length=100, examples=["Asha Rao"])
    customer_phone: str = Field(..., examples=["+919812345678"])
    customer_email: Optional[str] = Field(None, max_length=255, examples=["asha@example.com"])

    # Delivery
    delivery_type: DeliveryType = Field(..., examples=["delivery"])
    delivery_address: Optional[str] = Field(
        None,
        max_length=500,
        validate_default=True,
        examples=["12 MG Road, Bengaluru"],
    )
    distance_km: Optional[float] = Field(None, ge=0, examples=[3.4])

    # Cart
    items: List[OrderLineCreate] = Field(..., min_length=1, max_length=MAX_ORDER_LINES)
    coupon_code: Optional[str] = Field(None, max_length=50, examples=["SAVE20"])
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("customer_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Customer name is required")
        return v

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if not PHONE_PATTERN.match(v):
            raise ValueError("Phone number must be 1-15 digits, optionally prefixed with +")
        return v

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v.strip() == "":
            return None
        v = v.strip()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email format")
        return v

    @field_validator("delivery_address")
    @classmethod
    def validate_address(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        v = v.strip() if v else None
        if info.data.get("delivery_type") == DeliveryType.DELIVERY and not v:
            raise ValueError("Delivery address is required for delivery orders")
        return v

    @field_validator("items")
    @classmethod
    def validate_unique_dishes(cls, v: List[OrderLineCreate]) -> List[OrderLineCreate]:
        counts = Counter(line.dish_id for line in v)
        duplicates = sorted(dish_id for dish_id, count in counts.items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate dish lines are not allowed: {', '.join(duplicates)}")
        return v

    @field_validator("coupon_code")
    @classmethod
    def blank_coupon_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class CouponValidateRequest(BaseModel):
    """Pre-checkout coupon preview."""
    business_id: str = Field(..., min_length=1, max_length=36)
    code: str = Field(..., min_length=1, max_length=50, examples=["SAVE20"])
    order_subtotal_cents: int = Field(..., ge=0, examples=[50000])
    customer_phone: Optional[str] = Field(None, max_length=20)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus = Field(..., examples=["confirmed"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    dish_id: str
    dish_name: Optional[str] = None
    quantity: int
    unit_price_cents: int
    line_total_cents: int


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    business_id: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str]
    delivery_type: DeliveryType
    delivery_address: Optional[str]
    items: List[OrderItemResponse]
    subtotal_cents: int
    delivery_fee_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    status: OrderStatus
    coupon_id: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]
    fulfilled_at: Optional[datetime]


class OrderData(BaseModel):
    order: OrderResponse


class OrderEnvelope(BaseModel):
    """Response after creating, reading or updating an order."""
    success: bool = True
    data: OrderData


class OrderListData(BaseModel):
    total: int
    orders: List[OrderResponse]


class OrderListEnvelope(BaseModel):
    success: bool = True
    data: OrderListData


class OrderSummary(BaseModel):
    total_orders: int
    total_sales_cents: int
    average_order_value_cents: int
    orders_by_status: dict[str, int]


class OrderSummaryData(BaseModel):
    summary: OrderSummary


class OrderSummaryEnvelope(BaseModel):
    success: bool = True
    data: OrderSummaryData


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: Optional[str] = None
    discount_type: DiscountType
    discount_value: int
    max_discount_cents: Optional[int] = None
    min_order_value_cents: int
    valid_until: Optional[datetime] = None
    usage_limit_type: UsageLimitType


class CouponValidateResponse(BaseModel):
    valid: bool
    discount_amount_cents: int
    coupon: CouponResponse


class QuotaResponse(BaseModel):
    business_id: str
    tier: str
    allowed: bool
    current: int
    limit: Optional[int]
    is_unlimited: bool


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: ErrorBody


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    redis: str
    timestamp: datetime
