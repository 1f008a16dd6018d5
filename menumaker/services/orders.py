"""
Order Services

OrderCreationPipeline turns a checkout payload into a priced, committed
order. OrderStatusService moves committed orders through their lifecycle.

Pipeline steps (first failure wins, nothing is persisted on failure):
    1. structural validation of the payload
    2. subscription quota pre-check
    3. business config, dish resolution, subtotal, minimum order value
    4. coupon pricing
    5. delivery fee (delivery orders only)
    6. totals and invariant check
    7. atomic commit (order + usage counter + coupon redemption)
    8. order.created event
"""

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from menumaker.core.exceptions import (
    DishNotFound,
    DishesUnavailable,
    InvariantViolation,
    MinimumOrderNotMet,
    OrderLimitReached,
    OrderValidationError,
    StoreUnavailableError,
    format_validation_errors,
)
from menumaker.domain import (
    CouponPricing,
    DeliveryType,
    Order,
    OrderLine,
    OrderStatus,
    QuotaDecision,
    SubscriptionUsage,
    utcnow,
)
from menumaker.schemas import OrderCreate
from menumaker.services.coupons import CouponEngine
from menumaker.services.delivery import DeliveryFeeCalculator
from menumaker.services.events import BaseOrderEventDispatcher
from menumaker.services.quota import SubscriptionQuotaGuard
from menumaker.services.state_machine import INITIAL_STATUS, OrderStateMachine
from menumaker.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)


def parse_order_payload(payload: Union[OrderCreate, dict[str, Any]]) -> OrderCreate:
    """
    Structurally validate a checkout payload.

    Raises:
        OrderValidationError: With one entry per failing field
    """
    if isinstance(payload, OrderCreate):
        return payload
    try:
        return OrderCreate.model_validate(payload)
    except ValidationError as e:
        raise OrderValidationError(format_validation_errors(e.errors()))


class OrderCreationPipeline:
    """
    Orchestrates quota, coupon and delivery pricing into one order.

    Example:
        >>> pipeline = OrderCreationPipeline(store, events=get_event_dispatcher())
        >>> order = await pipeline.create_order(payload)
        >>> order.status
        <OrderStatus.PENDING: 'pending'>
    """

    def __init__(
        self,
        store: BaseOrderStore,
        guard: Optional[SubscriptionQuotaGuard] = None,
        coupon_engine: Optional[CouponEngine] = None,
        calculator: Optional[DeliveryFeeCalculator] = None,
        events: Optional[BaseOrderEventDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.guard = guard or SubscriptionQuotaGuard()
        self.coupon_engine = coupon_engine or CouponEngine(store, clock=clock)
        self.calculator = calculator or DeliveryFeeCalculator()
        self.events = events
        self.clock = clock

    async def check_quota(self, business_id: str) -> tuple[Optional[SubscriptionUsage], QuotaDecision]:
        """
        Read usage and decide whether one more order is allowed.

        Returns:
            (usage, decision); usage is None when it could not be read
        """
        try:
            usage = await self.store.get_subscription_usage(business_id)
        except StoreUnavailableError as e:
            logger.warning(f"Usage read failed for business {business_id}: {e.message}")
            usage = None
        return usage, self.guard.check_quota(business_id, usage)

    async def _enforce_quota(self, business_id: str) -> None:
        usage, decision = await self.check_quota(business_id)
        if decision.allowed:
            return
        if usage is None:
            raise StoreUnavailableError("Subscription usage is unavailable")
        logger.info(
            f"Order blocked for business {business_id}: "
            f"limit reached ({decision.current}/{decision.limit})"
        )
        raise OrderLimitReached(decision.current, decision.limit)

    async def _resolve_lines(self, request: OrderCreate) -> list[OrderLine]:
        dish_ids = [line.dish_id for line in request.items]
        dishes = await self.store.get_dishes(request.business_id, dish_ids)

        missing = [dish_id for dish_id in dish_ids if dish_id not in dishes]
        if missing:
            raise DishNotFound(missing)

        unavailable = [
            {"id": dish.id, "name": dish.name}
            for dish in (dishes[dish_id] for dish_id in dish_ids)
            if not dish.is_available
        ]
        if unavailable:
            raise DishesUnavailable(unavailable)

        return [
            OrderLine(
                dish_id=line.dish_id,
                quantity=line.quantity,
                unit_price_cents=dishes[line.dish_id].price_cents,
                dish_name=dishes[line.dish_id].name,
            )
            for line in request.items
        ]

    async def create_order(self, payload: Union[OrderCreate, dict[str, Any]]) -> Order:
        """
        Price, validate and commit a new order.

        Args:
            payload: OrderCreate or its raw dict form

        Returns:
            Order: The committed order in `pending`

        Raises:
            OrderingError: Any validation, business-rule or lookup failure
        """
        request = parse_order_payload(payload)
        business_id = request.business_id

        await self._enforce_quota(business_id)

        config = await self.store.get_business_config(business_id)
        lines = await self._resolve_lines(request)
        subtotal = sum(line.line_total_cents for line in lines)

        if config.min_order_cents and subtotal < config.min_order_cents:
            raise MinimumOrderNotMet(config.min_order_cents, subtotal, config.currency)

        pricing: Optional[CouponPricing] = None
        if request.coupon_code:
            pricing = await self.coupon_engine.validate_and_price(
                request.coupon_code,
                subtotal,
                business_id,
                customer_key=request.customer_phone,
            )
        discount = pricing.discount_cents if pricing else 0

        delivery_fee = 0
        if request.delivery_type == DeliveryType.DELIVERY:
            delivery_fee = self.calculator.compute_fee(config.delivery, subtotal, request.distance_km)

        order = Order(
            id=str(uuid.uuid4()),
            business_id=business_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            delivery_type=request.delivery_type,
            delivery_address=request.delivery_address,
            lines=lines,
            subtotal_cents=subtotal,
            delivery_fee_cents=delivery_fee,
            discount_cents=discount,
            total_cents=subtotal - discount + delivery_fee,
            currency=config.currency,
            status=INITIAL_STATUS,
            coupon_id=pricing.coupon.id if pricing else None,
            notes=request.notes,
            created_at=self.clock(),
        )

        try:
            order.check_invariants()
        except InvariantViolation as e:
            logger.error(f"Refusing to commit order {order.id}: {e.details}")
            raise

        order = await self.store.commit_order(order, pricing, customer_key=request.customer_phone)

        logger.info(
            f"Order {order.id} created for business {business_id}: "
            f"total {order.total_cents} {order.currency}"
        )

        if self.events is not None:
            self.events.order_created(order)

        return order


class OrderStatusService:
    """Applies state-machine transitions to stored orders."""

    def __init__(
        self,
        store: BaseOrderStore,
        events: Optional[BaseOrderEventDispatcher] = None,
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.events = events
        self.state_machine = state_machine or OrderStateMachine()
        self.clock = clock

    async def update_status(self, order_id: str, target: OrderStatus) -> Order:
        """
        Move an order to `target`.

        Raises:
            OrderNotFound: Unknown order
            InvalidTransition: The move is illegal, or the order changed
                status concurrently
        """
        order = await self.store.get_order(order_id)
        target = self.state_machine.transition(order.status, target)

        updated = await self.store.update_order_status(order_id, order.status, target, self.clock())
        logger.info(f"Order {order_id}: {order.status.value} -> {target.value}")

        if self.events is not None:
            self.events.order_status_changed(updated, order.status)
        return updated

    async def cancel(self, order_id: str) -> Order:
        return await self.update_status(order_id, OrderStatus.CANCELLED)


def summarize_orders(orders: list[Order]) -> dict[str, Any]:
    """
    Aggregate a business's orders.

    Cancelled orders are counted by status but excluded from sales.
    """
    by_status = Counter(order.status.value for order in orders)
    billable = [order for order in orders if order.status != OrderStatus.CANCELLED]
    total_sales = sum(order.total_cents for order in billable)

    return {
        "total_orders": len(orders),
        "total_sales_cents": total_sales,
        "average_order_value_cents": total_sales // len(billable) if billable else 0,
        "orders_by_status": {status.value: by_status.get(status.value, 0) for status in OrderStatus},
    }
