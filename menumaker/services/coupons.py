"""
Coupon Engine

Validates a coupon code against an order subtotal and prices the discount.

Checks run in a fixed order and stop at the first failure:
    1. code exists for the business (case-insensitive)
    2. coupon is active, started and not expired
    3. subtotal meets the coupon's minimum order value
    4. usage limits (total redemptions, per-customer redemptions)
    5. discount: percentage (floored) or fixed (capped at the subtotal)
    6. optional max discount cap

The engine only reads redemption counts. Incrementing them is part of the
order commit, where the store re-checks the limit atomically.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from menumaker.core.exceptions import CouponRejected
from menumaker.domain import (
    CouponPricing,
    CouponRecord,
    CouponRejectionReason,
    DiscountType,
    UsageLimitType,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    """Coupon codes are compared and stored upper-cased."""
    return code.strip().upper()


def calculate_discount(coupon: CouponRecord, order_subtotal_cents: int) -> int:
    """
    Compute the discount a coupon grants on a subtotal.

    Returns:
        int: Discount in cents, always within [0, order_subtotal_cents]
            and never above the coupon's max discount cap
    """
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_subtotal_cents * coupon.discount_value // 100
    else:
        discount = coupon.discount_value

    if coupon.max_discount_cents is not None:
        discount = min(discount, coupon.max_discount_cents)

    return max(0, min(discount, order_subtotal_cents))


def check_usage_limits(
    coupon: CouponRecord,
    redemption_count: int,
    customer_redemption_count: Optional[int] = None,
) -> None:
    """
    Raise if the coupon has no redemptions left.

    Args:
        coupon: Coupon being applied
        redemption_count: Redemptions committed across all customers
        customer_redemption_count: Redemptions by the current customer,
            None when the customer is unknown

    Raises:
        CouponRejected: usage_limit_reached / customer_limit_reached
    """
    if coupon.usage_limit_type == UsageLimitType.TOTAL:
        limit = coupon.total_usage_limit or 0
        if redemption_count >= limit:
            raise CouponRejected(
                CouponRejectionReason.USAGE_LIMIT_REACHED,
                "Coupon usage limit reached",
                {"limit": limit},
            )

    if (
        coupon.usage_limit_type == UsageLimitType.PER_CUSTOMER
        and coupon.usage_limit_per_customer is not None
        and customer_redemption_count is not None
        and customer_redemption_count >= coupon.usage_limit_per_customer
    ):
        raise CouponRejected(
            CouponRejectionReason.CUSTOMER_LIMIT_REACHED,
            "You have already used this coupon",
            {"limit": coupon.usage_limit_per_customer},
        )


def price_coupon(
    coupon: Optional[CouponRecord],
    order_subtotal_cents: int,
    redemption_count: int,
    now: datetime,
    customer_redemption_count: Optional[int] = None,
) -> CouponPricing:
    """
    Validate an already-loaded coupon and price its discount.

    Pure counterpart of `CouponEngine.validate_and_price`.

    Raises:
        CouponRejected: With the first failing reason
    """
    if coupon is None:
        raise CouponRejected(CouponRejectionReason.NOT_FOUND, "Coupon not found")

    valid_until = as_utc(coupon.valid_until)
    if not coupon.is_active or (valid_until is not None and valid_until < now):
        raise CouponRejected(
            CouponRejectionReason.EXPIRED_OR_INACTIVE,
            "Coupon has expired or is no longer active",
        )

    valid_from = as_utc(coupon.valid_from)
    if valid_from is not None and valid_from > now:
        raise CouponRejected(CouponRejectionReason.NOT_YET_VALID, "Coupon is not yet valid")

    if order_subtotal_cents < coupon.min_order_value_cents:
        raise CouponRejected(
            CouponRejectionReason.BELOW_MINIMUM,
            f"Minimum order value of {coupon.min_order_value_cents / 100:.2f} required",
            {"min_required": coupon.min_order_value_cents},
        )

    check_usage_limits(coupon, redemption_count, customer_redemption_count)

    return CouponPricing(
        coupon=coupon,
        discount_cents=calculate_discount(coupon, order_subtotal_cents),
    )


class CouponEngine:
    """
    Coupon validation against a read-only usage lookup.

    The lookup is any object exposing the coupon read methods of
    BaseOrderStore (find_coupon, coupon_redemption_count,
    customer_redemption_count).

    Example:
        >>> engine = CouponEngine(store)
        >>> pricing = await engine.validate_and_price("save20", 50000, business_id)
        >>> pricing.discount_cents
        5000
    """

    def __init__(self, usage_lookup, clock: Callable[[], datetime] = utcnow):
        self.usage_lookup = usage_lookup
        self.clock = clock

    async def validate_and_price(
        self,
        code: str,
        order_subtotal_cents: int,
        business_id: str,
        customer_key: Optional[str] = None,
    ) -> CouponPricing:
        """
        Validate a coupon code for a business and price the discount.

        Args:
            code: Coupon code as typed by the customer
            order_subtotal_cents: Subtotal the discount applies to
            business_id: Business that owns the coupon
            customer_key: Customer identity for per-customer limits

        Returns:
            CouponPricing: The coupon and its discount

        Raises:
            CouponRejected: With the first failing reason
        """
        coupon = await self.usage_lookup.find_coupon(business_id, normalize_code(code))

        redemption_count = 0
        customer_count = None
        if coupon is not None:
            if coupon.usage_limit_type == UsageLimitType.TOTAL:
                redemption_count = await self.usage_lookup.coupon_redemption_count(coupon.id)
            elif coupon.usage_limit_type == UsageLimitType.PER_CUSTOMER and customer_key:
                customer_count = await self.usage_lookup.customer_redemption_count(
                    coupon.id, customer_key
                )

        try:
            pricing = price_coupon(
                coupon,
                order_subtotal_cents,
                redemption_count,
                self.clock(),
                customer_count,
            )
        except CouponRejected as e:
            logger.info(f"Coupon '{code}' rejected for business {business_id}: {e.reason}")
            raise

        logger.debug(f"Coupon {pricing.coupon.code}: discount {pricing.discount_cents}")
        return pricing
