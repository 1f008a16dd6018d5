"""
In-Memory Order Store

Keeps businesses, dishes, coupons, usage counters and orders in process
memory. Used by tests and by ORDER_STORE_BACKEND=memory for local runs.

Behavior:
    - Every read awaits a (configurable) simulated latency, so concurrent
      requests interleave the way they would against a real database
    - commit_order runs its check-then-increment under one asyncio.Lock
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Optional

from menumaker.core.config import get_settings
from menumaker.core.exceptions import (
    BusinessNotFound,
    CouponRejected,
    InvalidTransition,
    OrderLimitReached,
    OrderNotFound,
)
from menumaker.domain import (
    BusinessConfig,
    CouponPricing,
    CouponRecord,
    CouponRejectionReason,
    DishRecord,
    Order,
    OrderStatus,
    SubscriptionTier,
    SubscriptionUsage,
    UsageLimitType,
    as_utc,
)
from menumaker.services.quota import default_usage
from menumaker.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)


class InMemoryOrderStore(BaseOrderStore):
    """
    In-memory implementation of the order store.

    Attributes:
        latency: Seconds awaited by every read (0 still yields to the loop)

    Example:
        >>> store = InMemoryOrderStore()
        >>> store.add_business(BusinessConfig("biz-1", DeliverySettings()))
        >>> store.set_subscription("biz-1", SubscriptionTier.FREE, order_count=19)
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._businesses: dict[str, BusinessConfig] = {}
        self._dishes: dict[str, DishRecord] = {}
        self._coupons: dict[str, CouponRecord] = {}
        self._usage: dict[str, SubscriptionUsage] = {}
        self._orders: dict[str, Order] = {}
        self._redemptions: dict[str, list[tuple[str, str]]] = defaultdict(list)
        self._lock = asyncio.Lock()

        logger.info(f"InMemoryOrderStore initialized (latency={latency}s)")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    async def _simulate_latency(self) -> None:
        await asyncio.sleep(self.latency)

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_business(self, config: BusinessConfig) -> None:
        self._businesses[config.business_id] = config

    def add_dish(self, dish: DishRecord) -> None:
        self._dishes[dish.id] = dish

    def add_coupon(self, coupon: CouponRecord) -> None:
        self._coupons[coupon.id] = replace(coupon, code=coupon.code.upper())

    def set_subscription(
        self,
        business_id: str,
        tier: SubscriptionTier,
        order_count: int = 0,
        order_limit: Optional[int] = -1,
    ) -> None:
        """
        Set the usage record of a business.

        `order_limit` defaults to the configured limit of the tier.
        """
        if order_limit == -1:
            order_limit = get_settings().tier_order_limit(tier)
        self._usage[business_id] = SubscriptionUsage(
            business_id=business_id,
            order_count=order_count,
            tier=tier,
            order_limit=order_limit,
        )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_business_config(self, business_id: str) -> BusinessConfig:
        await self._simulate_latency()
        config = self._businesses.get(business_id)
        if config is None:
            raise BusinessNotFound(business_id)
        return config

    async def get_dishes(self, business_id: str, dish_ids: list[str]) -> dict[str, DishRecord]:
        await self._simulate_latency()
        return {
            dish_id: self._dishes[dish_id]
            for dish_id in dish_ids
            if dish_id in self._dishes and self._dishes[dish_id].business_id == business_id
        }

    async def get_subscription_usage(self, business_id: str) -> SubscriptionUsage:
        await self._simulate_latency()
        return self._usage.get(business_id) or default_usage(business_id)

    async def find_coupon(self, business_id: str, code: str) -> Optional[CouponRecord]:
        await self._simulate_latency()
        for coupon in self._coupons.values():
            if coupon.business_id == business_id and coupon.code == code.upper():
                return coupon
        return None

    async def coupon_redemption_count(self, coupon_id: str) -> int:
        await self._simulate_latency()
        coupon = self._coupons.get(coupon_id)
        return coupon.usage_count if coupon else 0

    async def customer_redemption_count(self, coupon_id: str, customer_key: str) -> int:
        await self._simulate_latency()
        return sum(1 for _, key in self._redemptions[coupon_id] if key == customer_key)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def commit_order(
        self,
        order: Order,
        coupon_pricing: Optional[CouponPricing] = None,
        customer_key: Optional[str] = None,
    ) -> Order:
        async with self._lock:
            usage = self._usage.get(order.business_id) or default_usage(order.business_id)
            if not usage.is_unlimited and usage.order_count >= usage.order_limit:
                raise OrderLimitReached(usage.order_count, usage.order_limit)

            coupon = None
            if coupon_pricing is not None:
                coupon = self._coupons[coupon_pricing.coupon.id]
                if (
                    coupon.usage_limit_type == UsageLimitType.TOTAL
                    and coupon.usage_count >= (coupon.total_usage_limit or 0)
                ):
                    raise CouponRejected(
                        CouponRejectionReason.USAGE_LIMIT_REACHED,
                        "Coupon usage limit reached",
                        {"limit": coupon.total_usage_limit},
                    )
                if (
                    coupon.usage_limit_type == UsageLimitType.PER_CUSTOMER
                    and coupon.usage_limit_per_customer is not None
                    and customer_key
                    and sum(1 for _, key in self._redemptions[coupon.id] if key == customer_key)
                    >= coupon.usage_limit_per_customer
                ):
                    raise CouponRejected(
                        CouponRejectionReason.CUSTOMER_LIMIT_REACHED,
                        "You have already used this coupon",
                        {"limit": coupon.usage_limit_per_customer},
                    )

            # All checks passed: apply every mutation together
            self._usage[order.business_id] = replace(usage, order_count=usage.order_count + 1)
            if coupon is not None:
                self._coupons[coupon.id] = replace(coupon, usage_count=coupon.usage_count + 1)
                self._redemptions[coupon.id].append((order.id, customer_key or ""))
            self._orders[order.id] = order

        logger.debug(f"Order {order.id} committed for business {order.business_id}")
        return order

    async def get_order(self, order_id: str) -> Order:
        await self._simulate_latency()
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def update_order_status(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        at: datetime,
    ) -> Order:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            if order.status != expected:
                raise InvalidTransition(order.status, target)
            updated = order.with_status(target, at)
            self._orders[order_id] = updated
        return updated

    async def list_orders(
        self,
        business_id: str,
        status: Optional[OrderStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Order]:
        await self._simulate_latency()
        start, end = as_utc(start), as_utc(end)
        orders = [
            o for o in self._orders.values()
            if o.business_id == business_id
            and (status is None or o.status == status)
            and (start is None or o.created_at >= start)
            and (end is None or o.created_at <= end)
        ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def health_check(self) -> bool:
        """In-memory store is always reachable."""
        return True
