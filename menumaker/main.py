"""
FastAPI Application Entry Point

MenuMaker Orders - Order Creation & Pricing Engine

Endpoints:
    - POST /api/orders: Create (price, validate, commit) an order
    - GET /api/orders: List a business's orders
    - GET /api/orders/summary: Sales summary of a business
    - GET /api/orders/{order_id}: Fetch an order
    - PATCH /api/orders/{order_id}/status: Move an order through its lifecycle
    - POST /api/orders/{order_id}/cancel: Cancel an order
    - POST /api/coupons/validate: Preview a coupon discount
    - GET /api/subscriptions/{business_id}/usage: Order quota of a business
    - GET /health: System health check

Version: 1.0.0
"""

import logging
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import redis

# Internal imports
from menumaker.core.config import get_settings, setup_logging
from menumaker.core.exceptions import (
    InvariantViolation,
    OrderingError,
    format_validation_errors,
)
from menumaker.domain import OrderStatus
from menumaker.schemas import (
    CouponResponse,
    CouponValidateRequest,
    CouponValidateResponse,
    ErrorResponse,
    HealthResponse,
    OrderCreate,
    OrderEnvelope,
    OrderListEnvelope,
    OrderStatusUpdate,
    OrderSummaryEnvelope,
    QuotaResponse,
)
from menumaker.services.coupons import CouponEngine
from menumaker.services.events import BaseOrderEventDispatcher, get_event_dispatcher
from menumaker.services.orders import (
    OrderCreationPipeline,
    OrderStatusService,
    summarize_orders,
)
from menumaker.services.store import BaseOrderStore, get_order_store

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.uses_database:
        from menumaker.database import init_db

        await init_db()
        logger.info("✅ Database initialized")

    store = get_order_store()
    logger.info(f"✅ Order Store: {store.provider_name}")
    logger.info(
        f"✅ Quota: free={settings.free_tier_order_limit}, "
        f"starter={settings.starter_tier_order_limit}, "
        f"fail_open={settings.quota_fail_open}"
    )

    # Validate production config
    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"⚠️ Configuration problems: {problems}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    if settings.uses_database:
        from menumaker.database import engine

        await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order creation and pricing engine: delivery fees, coupon discounts, "
        "subscription quotas and the order status lifecycle."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_store() -> BaseOrderStore:
    return get_order_store()


def get_events() -> BaseOrderEventDispatcher:
    return get_event_dispatcher()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def error_envelope(status_code: int, error: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(OrderingError)
async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
    if isinstance(exc, InvariantViolation):
        logger.error(f"Invariant violation on {request.url.path}: {exc.details}")
    return error_envelope(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_envelope(
        status.HTTP_400_BAD_REQUEST,
        {
            "code": "VALIDATION_ERROR",
            "message": "Validation failed",
            "details": format_validation_errors(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    error = {"code": "INTERNAL_ERROR", "message": "Internal server error"}
    if settings.debug:
        error["details"] = str(exc)
    return error_envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, error)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(store: BaseOrderStore = Depends(get_store)) -> HealthResponse:
    """Verify the order store and Redis are reachable."""

    # Check order store
    store_status = "healthy"
    try:
        if not await store.health_check():
            store_status = "unhealthy"
    except Exception as e:
        store_status = f"unhealthy: {str(e)}"
        logger.error(f"Order store health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if store_status == redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    store: BaseOrderStore = Depends(get_store),
    events: BaseOrderEventDispatcher = Depends(get_events),
) -> dict[str, Any]:
    """
    Price and create an order from a cart.

    Quota, dish availability, coupon and delivery fee are all evaluated
    before anything is written; the order, the usage counter and the
    coupon redemption are committed together.
    """
    logger.info(f"Creating order for business {order_data.business_id}")

    pipeline = OrderCreationPipeline(store, events=events)
    order = await pipeline.create_order(order_data)

    return {"success": True, "data": {"order": order.to_dict()}}


@app.get(
    "/api/orders",
    response_model=OrderListEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    business_id: str = Query(..., min_length=1),
    status: Optional[OrderStatus] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    store: BaseOrderStore = Depends(get_store),
) -> dict[str, Any]:
    """Retrieve a business's orders, newest first."""
    orders = await store.list_orders(business_id, status=status, start=start, end=end)
    return {
        "success": True,
        "data": {"total": len(orders), "orders": [order.to_dict() for order in orders]},
    }


@app.get(
    "/api/orders/summary",
    response_model=OrderSummaryEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Order Summary",
)
async def order_summary(
    business_id: str = Query(..., min_length=1),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    store: BaseOrderStore = Depends(get_store),
) -> dict[str, Any]:
    """Totals, average order value and order counts per status."""
    orders = await store.list_orders(business_id, start=start, end=end)
    return {"success": True, "data": {"summary": summarize_orders(orders)}}


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    store: BaseOrderStore = Depends(get_store),
) -> dict[str, Any]:
    """Get a specific order by ID."""
    order = await store.get_order(order_id)
    return {"success": True, "data": {"order": order.to_dict()}}


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    store: BaseOrderStore = Depends(get_store),
    events: BaseOrderEventDispatcher = Depends(get_events),
) -> dict[str, Any]:
    order = await OrderStatusService(store, events=events).update_status(order_id, body.status)
    return {"success": True, "data": {"order": order.to_dict()}}


@app.post(
    "/api/orders/{order_id}/cancel",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Cancel Order",
)
async def cancel_order(
    order_id: str,
    store: BaseOrderStore = Depends(get_store),
    events: BaseOrderEventDispatcher = Depends(get_events),
) -> dict[str, Any]:
    order = await OrderStatusService(store, events=events).cancel(order_id)
    return {"success": True, "data": {"order": order.to_dict()}}


# =============================================================================
# COUPON & SUBSCRIPTION ENDPOINTS
# =============================================================================

@app.post(
    "/api/coupons/validate",
    response_model=CouponValidateResponse,
    responses=ERROR_RESPONSES,
    tags=["Coupons"],
    summary="Validate Coupon",
)
async def validate_coupon(
    body: CouponValidateRequest,
    store: BaseOrderStore = Depends(get_store),
) -> CouponValidateResponse:
    """
    Preview the discount a coupon grants on a subtotal.

    Nothing is redeemed; redemption happens when the order is created.
    """
    pricing = await CouponEngine(store).validate_and_price(
        body.code,
        body.order_subtotal_cents,
        body.business_id,
        customer_key=body.customer_phone,
    )
    return CouponValidateResponse(
        valid=True,
        discount_amount_cents=pricing.discount_cents,
        coupon=CouponResponse.model_validate(pricing.coupon),
    )


@app.get(
    "/api/subscriptions/{business_id}/usage",
    response_model=QuotaResponse,
    tags=["Subscriptions"],
    summary="Subscription Usage",
)
async def subscription_usage(
    business_id: str,
    store: BaseOrderStore = Depends(get_store),
) -> QuotaResponse:
    """Whether the business may create another order this period."""
    usage, decision = await OrderCreationPipeline(store).check_quota(business_id)
    return QuotaResponse(
        business_id=business_id,
        tier=usage.tier.value if usage else "unknown",
        **decision.to_dict(),
    )
