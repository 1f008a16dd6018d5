"""
Domain Types

Plain-data types shared by the pricing engine, the order stores and the
API layer. The engine receives and returns these objects; it never sees
database sessions or ORM rows.

Money is always integer cents.
"""

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from menumaker.core.exceptions import InvariantViolation


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    READY = "ready"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class DeliveryType(str, enum.Enum):
    """Order type - Pickup or Delivery."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


class DeliveryModel(str, enum.Enum):
    """How a business charges for delivery."""
    FLAT = "flat"
    DISTANCE = "distance"
    FREE = "free"


class RoundingPolicy(str, enum.Enum):
    """Rounding applied to a fractional-cent distance fee."""
    ROUND = "round"
    CEIL = "ceil"
    FLOOR = "floor"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class UsageLimitType(str, enum.Enum):
    PER_CUSTOMER = "per_customer"
    TOTAL = "total"
    UNLIMITED = "unlimited"


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class CouponRejectionReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED_OR_INACTIVE = "expired_or_inactive"
    NOT_YET_VALID = "not_yet_valid"
    BELOW_MINIMUM = "below_minimum"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    CUSTOMER_LIMIT_REACHED = "customer_limit_reached"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (SQLite round-trips) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# CONFIGURATION INPUTS
# =============================================================================

@dataclass(frozen=True)
class DeliverySettings:
    """
    Per-business delivery configuration.

    Attributes:
        model: flat, distance or free
        flat_fee_cents: Fee charged by the flat model
        base_fee_cents: Fixed part of the distance model
        per_km_fee_cents: Variable part of the distance model
        min_order_free_delivery_cents: Subtotal from which delivery is free
        rounding: Rounding policy for fractional-cent distance fees
    """
    model: DeliveryModel = DeliveryModel.FLAT
    flat_fee_cents: int = 0
    base_fee_cents: int = 0
    per_km_fee_cents: int = 0
    min_order_free_delivery_cents: Optional[int] = None
    rounding: RoundingPolicy = RoundingPolicy.ROUND


@dataclass(frozen=True)
class BusinessConfig:
    """Ordering configuration of one business."""
    business_id: str
    delivery: DeliverySettings
    currency: str = "INR"
    min_order_cents: Optional[int] = None


@dataclass(frozen=True)
class DishRecord:
    id: str
    business_id: str
    name: str
    price_cents: int
    is_available: bool = True


@dataclass(frozen=True)
class CouponRecord:
    """
    A discount code as seen by the pricing engine (read-only).

    Attributes:
        code: Upper-cased coupon code
        discount_value: Percent for percentage coupons, cents for fixed ones
        usage_count: Redemptions committed so far
    """
    id: str
    business_id: str
    code: str
    discount_type: DiscountType
    discount_value: int
    min_order_value_cents: int = 0
    max_discount_cents: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    usage_limit_type: UsageLimitType = UsageLimitType.UNLIMITED
    total_usage_limit: Optional[int] = None
    usage_limit_per_customer: Optional[int] = None
    usage_count: int = 0
    name: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionUsage:
    """
    Order usage of a business for the current billing period.

    Attributes:
        order_count: Orders created this period
        order_limit: Tier limit, None when unlimited
    """
    business_id: str
    order_count: int
    tier: SubscriptionTier
    order_limit: Optional[int]

    @property
    def is_unlimited(self) -> bool:
        return self.tier == SubscriptionTier.PRO or self.order_limit is None


# =============================================================================
# ENGINE OUTPUTS
# =============================================================================

@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    current: int
    limit: Optional[int]
    is_unlimited: bool

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "current": self.current,
            "limit": self.limit,
            "is_unlimited": self.is_unlimited,
        }


@dataclass(frozen=True)
class CouponPricing:
    """Outcome of a successful coupon validation."""
    coupon: CouponRecord
    discount_cents: int


@dataclass(frozen=True)
class OrderLine:
    dish_id: str
    quantity: int
    unit_price_cents: int
    dish_name: Optional[str] = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass
class Order:
    """
    A priced order.

    Tracks the pricing breakdown and the lifecycle status. Orders are
    built by the creation pipeline and moved through their lifecycle by
    the state machine.
    """
    id: str
    business_id: str
    customer_name: str
    customer_phone: str
    delivery_type: DeliveryType
    lines: list[OrderLine]
    subtotal_cents: int
    delivery_fee_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    status: OrderStatus = OrderStatus.PENDING
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    coupon_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None

    def check_invariants(self) -> None:
        """
        Verify the pricing invariants.

        Raises:
            InvariantViolation: If the totals do not add up, the discount
                exceeds the subtotal, or any amount is negative
        """
        problems = []
        if self.total_cents != self.subtotal_cents - self.discount_cents + self.delivery_fee_cents:
            problems.append("total != subtotal - discount + delivery_fee")
        if self.total_cents < 0:
            problems.append("total is negative")
        if not 0 <= self.discount_cents <= self.subtotal_cents:
            problems.append("discount outside [0, subtotal]")
        if self.delivery_fee_cents < 0:
            problems.append("delivery fee is negative")
        if self.subtotal_cents != sum(line.line_total_cents for line in self.lines):
            problems.append("subtotal != sum of line totals")
        if len({line.dish_id for line in self.lines}) != len(self.lines):
            problems.append("duplicate dish lines")

        if problems:
            raise InvariantViolation(
                "Order pricing invariant violated",
                {"order_id": self.id, "problems": problems},
            )

    def with_status(self, status: OrderStatus, at: datetime) -> "Order":
        """Return a copy moved to `status`, stamping fulfilment time."""
        fulfilled_at = self.fulfilled_at
        if status == OrderStatus.FULFILLED and fulfilled_at is None:
            fulfilled_at = at
        return replace(self, status=status, updated_at=at, fulfilled_at=fulfilled_at)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "business_id": self.business_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "delivery_type": self.delivery_type.value,
            "delivery_address": self.delivery_address,
            "items": [
                {
                    "dish_id": line.dish_id,
                    "dish_name": line.dish_name,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "line_total_cents": line.line_total_cents,
                }
                for line in self.lines
            ],
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "status": self.status.value,
            "coupon_id": self.coupon_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "fulfilled_at": self.fulfilled_at.isoformat() if self.fulfilled_at else None,
        }
