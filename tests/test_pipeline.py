"""
Tests for the order creation pipeline and the status service

Runs against the in-memory store, including the concurrent checkout
scenarios for the subscription quota and total-limited coupons.
"""
import asyncio
from dataclasses import replace

import pytest

from menumaker.core.exceptions import (
    BusinessNotFound,
    CouponRejected,
    DishNotFound,
    DishesUnavailable,
    InvalidDeliveryInput,
    InvalidTransition,
    InvariantViolation,
    MinimumOrderNotMet,
    OrderLimitReached,
    OrderNotFound,
    OrderValidationError,
    StoreUnavailableError,
)
from menumaker.domain import DeliveryType, OrderStatus, SubscriptionTier
from menumaker.schemas import OrderCreate
from menumaker.services.coupons import CouponEngine
from menumaker.services.delivery import DeliveryFeeCalculator
from menumaker.services.orders import OrderCreationPipeline, summarize_orders
from menumaker.services.quota import SubscriptionQuotaGuard
from tests.conftest import BUSINESS_ID, DISTANCE_BUSINESS_ID


class TestCreateOrder:
    """Test the happy paths of create_order"""

    async def test_pickup_order(self, pipeline, store, events, checkout_payload):
        order = await pipeline.create_order(checkout_payload())

        assert order.status == OrderStatus.PENDING
        assert order.subtotal_cents == 50000
        assert order.delivery_fee_cents == 0
        assert order.discount_cents == 0
        assert order.total_cents == 50000
        assert order.currency == "INR"
        assert order.lines[0].unit_price_cents == 25000
        assert order.lines[0].dish_name == "Paneer Tikka"

        assert (await store.get_order(order.id)) == order
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 1
        assert events.created == [order]

    async def test_delivery_order_with_coupon(self, pipeline, checkout_payload):
        """Test 20% capped coupon and flat delivery on a 50000 subtotal"""
        order = await pipeline.create_order(checkout_payload(
            delivery_type="delivery",
            delivery_address="12 MG Road, Bengaluru",
            coupon_code="save20",
        ))

        assert order.subtotal_cents == 50000
        assert order.discount_cents == 5000
        assert order.delivery_fee_cents == 5000
        assert order.total_cents == 50000
        assert order.coupon_id == "cpn-save20"
        assert order.delivery_type == DeliveryType.DELIVERY

    async def test_free_delivery_above_threshold(self, pipeline, checkout_payload):
        order = await pipeline.create_order(checkout_payload(
            delivery_type="delivery",
            delivery_address="12 MG Road",
            items=[{"dish_id": "dish-paneer", "quantity": 4}],
        ))

        assert order.delivery_fee_cents == 0
        assert order.total_cents == 100000

    async def test_distance_delivery(self, pipeline, checkout_payload):
        """Test 2000 + 999 * 2.5 with ceil rounding"""
        order = await pipeline.create_order(checkout_payload(
            business_id=DISTANCE_BUSINESS_ID,
            delivery_type="delivery",
            delivery_address="4 Church Street",
            distance_km=2.5,
            items=[{"dish_id": "dish-biryani", "quantity": 1}],
        ))

        assert order.delivery_fee_cents == 4498
        assert order.total_cents == 30000 + 4498

    async def test_pickup_ignores_distance_settings(self, pipeline, checkout_payload):
        """Test pickup orders never need a distance"""
        order = await pipeline.create_order(checkout_payload(
            business_id=DISTANCE_BUSINESS_ID,
            items=[{"dish_id": "dish-biryani", "quantity": 1}],
        ))

        assert order.delivery_fee_cents == 0

    async def test_discount_never_exceeds_subtotal(self, pipeline, checkout_payload):
        order = await pipeline.create_order(checkout_payload(
            items=[{"dish_id": "dish-naan", "quantity": 1}],
            coupon_code="FLAT100",
        ))

        assert order.discount_cents == 5000
        assert order.total_cents == 0

    async def test_accepts_validated_model(self, pipeline, checkout_payload):
        order = await pipeline.create_order(OrderCreate(**checkout_payload()))

        assert order.total_cents == 50000

    async def test_order_ids_are_unique(self, pipeline, checkout_payload):
        orders = [await pipeline.create_order(checkout_payload()) for _ in range(5)]

        assert len({order.id for order in orders}) == 5


class TestCreateOrderRejections:
    """Test every rejection leaves the store untouched"""

    async def assert_nothing_committed(self, store):
        assert await store.list_orders(BUSINESS_ID) == []
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 0

    async def test_structural_errors_are_collected(self, pipeline, store, checkout_payload):
        payload = checkout_payload(
            customer_name="   ",
            customer_phone="98-12",
            items=[{"dish_id": "dish-paneer", "quantity": 0}],
        )

        with pytest.raises(OrderValidationError) as exc_info:
            await pipeline.create_order(payload)

        fields = {d["field"] for d in exc_info.value.details}
        assert {"customer_name", "customer_phone", "items.0.quantity"} <= fields
        await self.assert_nothing_committed(store)

    @pytest.mark.parametrize("phone", ["+٩١٩٨١٢٣٤٥٦٧٨", "９８１２３４５６７８"])
    async def test_non_ascii_phone_digits_are_rejected(self, pipeline, store, checkout_payload, phone):
        """Test Arabic-Indic and full-width digits do not pass as a phone number"""
        with pytest.raises(OrderValidationError) as exc_info:
            await pipeline.create_order(checkout_payload(customer_phone=phone))

        assert exc_info.value.details[0]["field"] == "customer_phone"
        await self.assert_nothing_committed(store)

    async def test_duplicate_dish_lines_are_rejected(self, pipeline, store, checkout_payload):
        payload = checkout_payload(items=[
            {"dish_id": "dish-paneer", "quantity": 1},
            {"dish_id": "dish-paneer", "quantity": 3},
        ])

        with pytest.raises(OrderValidationError) as exc_info:
            await pipeline.create_order(payload)

        assert exc_info.value.details[0]["field"] == "items"
        await self.assert_nothing_committed(store)

    async def test_delivery_requires_address(self, pipeline, checkout_payload):
        with pytest.raises(OrderValidationError) as exc_info:
            await pipeline.create_order(checkout_payload(delivery_type="delivery"))

        assert exc_info.value.details[0]["field"] == "delivery_address"

    @pytest.mark.parametrize("count", [0, 51])
    async def test_line_count_bounds(self, pipeline, checkout_payload, count):
        items = [{"dish_id": f"dish-{i}", "quantity": 1} for i in range(count)]

        with pytest.raises(OrderValidationError):
            await pipeline.create_order(checkout_payload(items=items))

    async def test_quota_exhausted(self, pipeline, store, events, checkout_payload):
        """Test free tier at 20/20 is a hard block"""
        store.set_subscription(BUSINESS_ID, SubscriptionTier.FREE, order_count=20)

        with pytest.raises(OrderLimitReached) as exc_info:
            await pipeline.create_order(checkout_payload())

        assert exc_info.value.status_code == 403
        assert exc_info.value.details == {"current": 20, "limit": 20, "upgrade_required": True}
        assert await store.list_orders(BUSINESS_ID) == []
        assert events.created == []

    async def test_pro_tier_is_never_blocked(self, pipeline, store, checkout_payload):
        store.set_subscription(BUSINESS_ID, SubscriptionTier.PRO, order_count=10_000)

        order = await pipeline.create_order(checkout_payload())

        assert order.status == OrderStatus.PENDING
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 10_001

    async def test_unknown_business(self, pipeline, checkout_payload):
        with pytest.raises(BusinessNotFound):
            await pipeline.create_order(checkout_payload(business_id="biz-missing"))

    async def test_unknown_dish(self, pipeline, store, checkout_payload):
        with pytest.raises(DishNotFound) as exc_info:
            await pipeline.create_order(checkout_payload(items=[
                {"dish_id": "dish-paneer", "quantity": 1},
                {"dish_id": "dish-ghost", "quantity": 1},
            ]))

        assert exc_info.value.details == {"dish_ids": ["dish-ghost"]}
        await self.assert_nothing_committed(store)

    async def test_dish_of_another_business_is_unknown(self, pipeline, checkout_payload):
        with pytest.raises(DishNotFound):
            await pipeline.create_order(checkout_payload(items=[{"dish_id": "dish-biryani", "quantity": 1}]))

    async def test_unavailable_dish(self, pipeline, store, checkout_payload):
        with pytest.raises(DishesUnavailable) as exc_info:
            await pipeline.create_order(checkout_payload(items=[{"dish_id": "dish-lassi", "quantity": 1}]))

        assert exc_info.value.details == {"unavailable_dishes": [{"id": "dish-lassi", "name": "Mango Lassi"}]}
        await self.assert_nothing_committed(store)

    async def test_minimum_order_not_met(self, pipeline, checkout_payload):
        with pytest.raises(MinimumOrderNotMet) as exc_info:
            await pipeline.create_order(checkout_payload(
                business_id=DISTANCE_BUSINESS_ID,
                items=[{"dish_id": "dish-raita", "quantity": 2}],
            ))

        assert exc_info.value.details == {"min_amount": 10000, "current_amount": 8000}

    async def test_coupon_rejection_creates_no_order(self, pipeline, store, checkout_payload):
        with pytest.raises(CouponRejected) as exc_info:
            await pipeline.create_order(checkout_payload(coupon_code="EXPIRED"))

        assert exc_info.value.code == "COUPON_EXPIRED_OR_INACTIVE"
        await self.assert_nothing_committed(store)

    async def test_coupon_below_minimum(self, pipeline, checkout_payload):
        with pytest.raises(CouponRejected) as exc_info:
            await pipeline.create_order(checkout_payload(
                items=[{"dish_id": "dish-naan", "quantity": 1}],
                coupon_code="SAVE20",
            ))

        assert exc_info.value.reason == "below_minimum"

    async def test_distance_delivery_without_distance(self, pipeline, checkout_payload):
        with pytest.raises(InvalidDeliveryInput):
            await pipeline.create_order(checkout_payload(
                business_id=DISTANCE_BUSINESS_ID,
                delivery_type="delivery",
                delivery_address="4 Church Street",
                items=[{"dish_id": "dish-biryani", "quantity": 1}],
            ))

    async def test_per_customer_coupon_limit(self, pipeline, checkout_payload):
        await pipeline.create_order(checkout_payload(coupon_code="ONCE"))

        with pytest.raises(CouponRejected) as exc_info:
            await pipeline.create_order(checkout_payload(coupon_code="ONCE"))
        assert exc_info.value.reason == "customer_limit_reached"

        other = await pipeline.create_order(checkout_payload(coupon_code="ONCE", customer_phone="+919800000001"))
        assert other.discount_cents == 5000


class TestQuotaReadFailure:
    """Test the fail-open policy when usage cannot be read"""

    @pytest.fixture
    def broken_usage(self, store):
        async def unavailable(business_id):
            raise StoreUnavailableError("Subscription usage is temporarily unavailable")

        store.get_subscription_usage = unavailable
        return store

    async def test_fails_open(self, broken_usage, events, checkout_payload):
        pipeline = OrderCreationPipeline(broken_usage, guard=SubscriptionQuotaGuard(fail_open=True), events=events)

        order = await pipeline.create_order(checkout_payload())

        assert order.status == OrderStatus.PENDING

    async def test_fails_closed(self, broken_usage, events, checkout_payload):
        pipeline = OrderCreationPipeline(broken_usage, guard=SubscriptionQuotaGuard(fail_open=False), events=events)

        with pytest.raises(StoreUnavailableError):
            await pipeline.create_order(checkout_payload())

        assert events.created == []


class NegativeFeeCalculator(DeliveryFeeCalculator):
    """Calculator that returns a fee below zero."""

    def compute_fee(self, settings, order_subtotal_cents, distance_km=None):
        return -500


class OversizedDiscountEngine(CouponEngine):
    """Coupon engine that discounts more than the subtotal."""

    async def validate_and_price(self, code, order_subtotal_cents, business_id, customer_key=None):
        pricing = await super().validate_and_price(code, order_subtotal_cents, business_id, customer_key)
        return replace(pricing, discount_cents=order_subtotal_cents + 1)


class TestInvariantGuard:
    """Test orders breaking a pricing invariant are never committed"""

    async def assert_nothing_committed(self, store, events):
        assert await store.list_orders(BUSINESS_ID) == []
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 0
        assert await store.coupon_redemption_count("cpn-save20") == 0
        assert events.created == []

    async def test_negative_fee_is_refused(self, store, events, checkout_payload):
        pipeline = OrderCreationPipeline(store, calculator=NegativeFeeCalculator(), events=events)

        with pytest.raises(InvariantViolation) as exc_info:
            await pipeline.create_order(checkout_payload(
                delivery_type="delivery",
                delivery_address="12 MG Road",
            ))

        assert "delivery fee is negative" in exc_info.value.details["problems"]
        assert exc_info.value.code == "INTERNAL_ERROR"
        await self.assert_nothing_committed(store, events)

    async def test_discount_above_subtotal_is_refused(self, store, events, checkout_payload):
        pipeline = OrderCreationPipeline(store, coupon_engine=OversizedDiscountEngine(store), events=events)

        with pytest.raises(InvariantViolation) as exc_info:
            await pipeline.create_order(checkout_payload(coupon_code="SAVE20"))

        assert "discount outside [0, subtotal]" in exc_info.value.details["problems"]
        await self.assert_nothing_committed(store, events)


class TestConcurrentCheckout:
    """Test the shared counters under concurrent requests"""

    async def test_quota_admits_exactly_remaining_slots(self, pipeline, store, checkout_payload):
        """Test 10 concurrent checkouts with 3 slots left create exactly 3 orders"""
        store.set_subscription(BUSINESS_ID, SubscriptionTier.FREE, order_count=17)

        results = await asyncio.gather(
            *(pipeline.create_order(checkout_payload()) for _ in range(10)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        blocked = [r for r in results if isinstance(r, OrderLimitReached)]
        assert len(created) == 3
        assert len(blocked) == 7
        assert len(await store.list_orders(BUSINESS_ID)) == 3
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 20

    async def test_total_coupon_limit_under_concurrency(self, pipeline, store, checkout_payload):
        """Test a coupon limited to 2 redemptions is redeemed exactly twice"""
        store.set_subscription(BUSINESS_ID, SubscriptionTier.PRO)

        results = await asyncio.gather(
            *(pipeline.create_order(checkout_payload(coupon_code="LIMITED")) for _ in range(6)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, CouponRejected)]
        assert len(created) == 2
        assert len(rejected) == 4
        assert all(r.reason == "usage_limit_reached" for r in rejected)
        assert await store.coupon_redemption_count("cpn-limited") == 2
        assert (await store.get_subscription_usage(BUSINESS_ID)).order_count == 2

    async def test_concurrent_transitions_apply_once(self, pipeline, status_service, checkout_payload):
        order = await pipeline.create_order(checkout_payload())

        results = await asyncio.gather(
            status_service.update_status(order.id, OrderStatus.CONFIRMED),
            status_service.update_status(order.id, OrderStatus.CANCELLED),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, InvalidTransition)) == 1


class TestOrderStatusService:
    """Test lifecycle updates of committed orders"""

    async def test_full_lifecycle(self, pipeline, status_service, events, checkout_payload):
        order = await pipeline.create_order(checkout_payload())

        for target in (OrderStatus.CONFIRMED, OrderStatus.READY, OrderStatus.FULFILLED):
            order = await status_service.update_status(order.id, target)

        assert order.status == OrderStatus.FULFILLED
        assert order.fulfilled_at is not None
        assert order.updated_at is not None
        assert [previous for _, previous in events.status_changes] == [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.READY,
        ]

    async def test_skipping_ready_is_rejected(self, pipeline, status_service, store, checkout_payload):
        order = await pipeline.create_order(checkout_payload())

        with pytest.raises(InvalidTransition):
            await status_service.update_status(order.id, OrderStatus.READY)

        assert (await store.get_order(order.id)).status == OrderStatus.PENDING

    async def test_cancelled_is_terminal(self, pipeline, status_service, checkout_payload):
        order = await pipeline.create_order(checkout_payload())
        await status_service.cancel(order.id)

        for target in OrderStatus:
            with pytest.raises(InvalidTransition):
                await status_service.update_status(order.id, target)

    async def test_unknown_order(self, status_service):
        with pytest.raises(OrderNotFound):
            await status_service.update_status("missing", OrderStatus.CONFIRMED)


class TestSummarizeOrders:
    """Test order summary aggregation"""

    async def test_summary(self, pipeline, status_service, store, checkout_payload):
        first = await pipeline.create_order(checkout_payload())
        await pipeline.create_order(checkout_payload(items=[{"dish_id": "dish-naan", "quantity": 2}]))
        await status_service.cancel(first.id)

        summary = summarize_orders(await store.list_orders(BUSINESS_ID))

        assert summary["total_orders"] == 2
        assert summary["total_sales_cents"] == 10000
        assert summary["average_order_value_cents"] == 10000
        assert summary["orders_by_status"]["pending"] == 1
        assert summary["orders_by_status"]["cancelled"] == 1
        assert summary["orders_by_status"]["fulfilled"] == 0

    def test_empty_summary(self):
        summary = summarize_orders([])

        assert summary["total_orders"] == 0
        assert summary["average_order_value_cents"] == 0
