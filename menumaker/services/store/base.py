"""
Order Store Abstract Base Class

Defines the persistence contract the ordering engine talks to. Both
InMemoryOrderStore and SqlAlchemyOrderStore must implement these methods,
so the pipeline behaves identically regardless of which store is active.

The two shared counters (subscription usage and coupon redemptions) are
only ever incremented inside `commit_order`, which re-checks their limits
in the same atomic unit of work that persists the order.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from menumaker.domain import (
    BusinessConfig,
    CouponPricing,
    CouponRecord,
    DishRecord,
    Order,
    OrderStatus,
    SubscriptionUsage,
)


class BaseOrderStore(ABC):
    """
    Abstract base class for order stores.

    Example:
        >>> store = get_order_store()
        >>> usage = await store.get_subscription_usage("biz-1")
        >>> order = await store.commit_order(order, pricing, customer_key="+919800000000")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the store backend.

        Returns:
            str: Backend name (e.g., "memory", "database")
        """
        pass

    # =========================================================================
    # READ-ONLY CONFIGURATION
    # =========================================================================

    @abstractmethod
    async def get_business_config(self, business_id: str) -> BusinessConfig:
        """
        Load the ordering configuration of a business.

        Raises:
            BusinessNotFound: If the business has no settings
        """
        pass

    @abstractmethod
    async def get_dishes(self, business_id: str, dish_ids: list[str]) -> dict[str, DishRecord]:
        """
        Load the dishes of a business by id.

        Returns:
            dict: dish id -> DishRecord, missing ids are simply absent
        """
        pass

    @abstractmethod
    async def get_subscription_usage(self, business_id: str) -> SubscriptionUsage:
        """
        Read the current billing-period usage of a business.

        A business without a usage record is reported as free tier with
        zero orders.

        Raises:
            StoreUnavailableError: If usage cannot be read
        """
        pass

    # =========================================================================
    # COUPON USAGE LOOKUP
    # =========================================================================

    @abstractmethod
    async def find_coupon(self, business_id: str, code: str) -> Optional[CouponRecord]:
        """Find a coupon by its upper-cased code within a business."""
        pass

    @abstractmethod
    async def coupon_redemption_count(self, coupon_id: str) -> int:
        """Number of committed redemptions across all customers."""
        pass

    @abstractmethod
    async def customer_redemption_count(self, coupon_id: str, customer_key: str) -> int:
        """Number of committed redemptions by one customer."""
        pass

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def commit_order(
        self,
        order: Order,
        coupon_pricing: Optional[CouponPricing] = None,
        customer_key: Optional[str] = None,
    ) -> Order:
        """
        Persist a priced order and increment the shared counters atomically.

        In one unit of work:
            1. increment the business's order count if under its limit
            2. increment the coupon's redemption count if under its limit
               and record the redemption
            3. insert the order and its lines

        Raises:
            OrderLimitReached: The business has no orders left this period
            CouponRejected: The coupon ran out of redemptions
        """
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFound: If no order has this id
        """
        pass

    @abstractmethod
    async def update_order_status(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        at: datetime,
    ) -> Order:
        """
        Move an order from `expected` to `target` (compare-and-set).

        Raises:
            OrderNotFound: If no order has this id
            InvalidTransition: If the order is no longer in `expected`
        """
        pass

    @abstractmethod
    async def list_orders(
        self,
        business_id: str,
        status: Optional[OrderStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Order]:
        """List a business's orders, newest first."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the store is reachable.

        Returns:
            bool: True if the store is operational
        """
        pass
