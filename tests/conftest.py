"""
Pytest fixtures and configuration for MenuMaker Orders tests

This file provides shared fixtures that can be used across all test modules.
The environment is pinned before `menumaker` is imported so the cached
settings use the in-memory store and an SQLite database URL.
"""
import os

os.environ["ENV_MODE"] = "development"
os.environ["DEBUG"] = "false"
os.environ["ORDER_STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["FREE_TIER_ORDER_LIMIT"] = "20"
os.environ["STARTER_TIER_ORDER_LIMIT"] = "100"
os.environ["QUOTA_FAIL_OPEN"] = "true"

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from menumaker.core.config import get_settings
from menumaker.domain import (
    BusinessConfig,
    CouponRecord,
    DeliveryModel,
    DeliverySettings,
    DiscountType,
    DishRecord,
    RoundingPolicy,
    UsageLimitType,
    utcnow,
)
from menumaker.services.events import BaseOrderEventDispatcher
from menumaker.services.orders import OrderCreationPipeline, OrderStatusService
from menumaker.services.store.memory import InMemoryOrderStore

get_settings.cache_clear()

BUSINESS_ID = "biz-1"
DISTANCE_BUSINESS_ID = "biz-distance"


class RecordingEventDispatcher(BaseOrderEventDispatcher):
    """Collects events instead of queueing Celery tasks."""

    def __init__(self):
        self.created = []
        self.status_changes = []

    def order_created(self, order):
        self.created.append(order)

    def order_status_changed(self, order, previous):
        self.status_changes.append((order, previous))


def seed_store(store: InMemoryOrderStore) -> InMemoryOrderStore:
    """
    Seed a store with two businesses, their dishes and a coupon set

    biz-1: flat delivery 5000, free from 100000
    biz-distance: 2000 + 999/km, ceil rounding, minimum order 10000
    """
    now = utcnow()

    store.add_business(BusinessConfig(
        business_id=BUSINESS_ID,
        currency="INR",
        delivery=DeliverySettings(
            model=DeliveryModel.FLAT,
            flat_fee_cents=5000,
            min_order_free_delivery_cents=100000,
        ),
    ))
    store.add_business(BusinessConfig(
        business_id=DISTANCE_BUSINESS_ID,
        currency="INR",
        min_order_cents=10000,
        delivery=DeliverySettings(
            model=DeliveryModel.DISTANCE,
            base_fee_cents=2000,
            per_km_fee_cents=999,
            rounding=RoundingPolicy.CEIL,
        ),
    ))

    store.add_dish(DishRecord("dish-paneer", BUSINESS_ID, "Paneer Tikka", 25000))
    store.add_dish(DishRecord("dish-naan", BUSINESS_ID, "Butter Naan", 5000))
    store.add_dish(DishRecord("dish-lassi", BUSINESS_ID, "Mango Lassi", 8000, is_available=False))
    store.add_dish(DishRecord("dish-biryani", DISTANCE_BUSINESS_ID, "Veg Biryani", 30000))
    store.add_dish(DishRecord("dish-raita", DISTANCE_BUSINESS_ID, "Raita", 4000))

    coupons = [
        CouponRecord("cpn-save20", BUSINESS_ID, "SAVE20", DiscountType.PERCENTAGE, 20,
                     min_order_value_cents=10000, max_discount_cents=5000),
        CouponRecord("cpn-flat100", BUSINESS_ID, "FLAT100", DiscountType.FIXED, 10000),
        CouponRecord("cpn-limited", BUSINESS_ID, "LIMITED", DiscountType.FIXED, 1000,
                     usage_limit_type=UsageLimitType.TOTAL, total_usage_limit=2),
        CouponRecord("cpn-once", BUSINESS_ID, "ONCE", DiscountType.PERCENTAGE, 10,
                     usage_limit_type=UsageLimitType.PER_CUSTOMER, usage_limit_per_customer=1),
        CouponRecord("cpn-expired", BUSINESS_ID, "EXPIRED", DiscountType.FIXED, 1000,
                     valid_until=now - timedelta(days=1)),
        CouponRecord("cpn-future", BUSINESS_ID, "FUTURE", DiscountType.FIXED, 1000,
                     valid_from=now + timedelta(days=1)),
        CouponRecord("cpn-inactive", BUSINESS_ID, "INACTIVE", DiscountType.FIXED, 1000,
                     is_active=False),
    ]
    for coupon in coupons:
        store.add_coupon(coupon)

    return store


@pytest.fixture
def store():
    """
    Provides a seeded in-memory order store

    Scope: function (fresh counters per test)
    """
    return seed_store(InMemoryOrderStore())


@pytest.fixture
def events():
    """
    Provides an event dispatcher that records instead of queueing tasks
    """
    return RecordingEventDispatcher()


@pytest.fixture
def pipeline(store, events):
    """
    Provides an order creation pipeline wired to the seeded store
    """
    return OrderCreationPipeline(store, events=events)


@pytest.fixture
def status_service(store, events):
    """
    Provides the order status service wired to the seeded store
    """
    return OrderStatusService(store, events=events)


@pytest.fixture
def checkout_payload():
    """
    Provides a factory for valid checkout payloads

    Defaults to a pickup order of 2 x Paneer Tikka (subtotal 50000).
    Keyword arguments override top-level fields.
    """
    def _make(**overrides):
        payload = {
            "business_id": BUSINESS_ID,
            "customer_name": "Asha Rao",
            "customer_phone": "+919812345678",
            "customer_email": "asha@example.com",
            "delivery_type": "pickup",
            "items": [{"dish_id": "dish-paneer", "quantity": 2}],
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def client(store, events):
    """
    Provides a FastAPI TestClient with the store and events overridden

    Automatically clears dependency overrides after the test
    """
    from menumaker.main import app, get_events, get_store

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_events] = lambda: events
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
