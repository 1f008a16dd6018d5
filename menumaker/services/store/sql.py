"""
SQLAlchemy Order Store

Production order store on the async SQLAlchemy engine.

Concurrency:
    Shared counters are never read-then-written from Python. commit_order
    issues guarded UPDATEs inside one transaction:

        UPDATE subscription_usage
           SET order_count = order_count + 1
         WHERE business_id = :id
           AND (order_limit IS NULL OR order_count < order_limit)

    Zero affected rows means another request took the last slot, and the
    whole transaction (order row included) rolls back. Coupon redemptions
    and status transitions use the same compare-and-set shape.

    A business without a usage row gets one through INSERT ... ON CONFLICT
    DO NOTHING first, so concurrent first orders never collide on its key.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menumaker import models
from menumaker.core.exceptions import (
    BusinessNotFound,
    CouponRejected,
    InvalidTransition,
    OrderLimitReached,
    OrderNotFound,
    StoreUnavailableError,
)
from menumaker.domain import (
    BusinessConfig,
    CouponPricing,
    CouponRecord,
    CouponRejectionReason,
    DeliverySettings,
    DishRecord,
    Order,
    OrderLine,
    OrderStatus,
    SubscriptionTier,
    SubscriptionUsage,
    UsageLimitType,
    as_utc,
)
from menumaker.services.quota import default_usage
from menumaker.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)

# Dialects whose INSERT supports ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# =============================================================================
# ROW <-> DOMAIN MAPPING
# =============================================================================

def coupon_from_row(row: models.Coupon) -> CouponRecord:
    return CouponRecord(
        id=row.id,
        business_id=row.business_id,
        code=row.code,
        name=row.name,
        discount_type=row.discount_type,
        discount_value=row.discount_value,
        min_order_value_cents=row.min_order_value_cents or 0,
        max_discount_cents=row.max_discount_cents,
        valid_from=as_utc(row.valid_from),
        valid_until=as_utc(row.valid_until),
        is_active=row.is_active,
        usage_limit_type=row.usage_limit_type,
        total_usage_limit=row.total_usage_limit,
        usage_limit_per_customer=row.usage_limit_per_customer,
        usage_count=row.usage_count or 0,
    )


def order_from_row(row: models.Order) -> Order:
    return Order(
        id=row.id,
        business_id=row.business_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_email=row.customer_email,
        delivery_type=row.delivery_type,
        delivery_address=row.delivery_address,
        lines=[
            OrderLine(
                dish_id=item.dish_id,
                dish_name=item.dish_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
            )
            for item in row.items
        ],
        subtotal_cents=row.subtotal_cents,
        delivery_fee_cents=row.delivery_fee_cents,
        discount_cents=row.discount_cents,
        total_cents=row.total_cents,
        currency=row.currency,
        status=row.status,
        coupon_id=row.coupon_id,
        notes=row.notes,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        fulfilled_at=as_utc(row.fulfilled_at),
    )


def order_to_row(order: Order) -> models.Order:
    return models.Order(
        id=order.id,
        business_id=order.business_id,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        customer_email=order.customer_email,
        delivery_type=order.delivery_type,
        delivery_address=order.delivery_address,
        notes=order.notes,
        subtotal_cents=order.subtotal_cents,
        delivery_fee_cents=order.delivery_fee_cents,
        discount_cents=order.discount_cents,
        total_cents=order.total_cents,
        currency=order.currency,
        coupon_id=order.coupon_id,
        status=order.status,
        created_at=order.created_at,
        items=[
            models.OrderItem(
                dish_id=line.dish_id,
                dish_name=line.dish_name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            )
            for line in order.lines
        ],
    )


class SqlAlchemyOrderStore(BaseOrderStore):
    """
    Order store backed by the relational database.

    Attributes:
        session_maker: Factory for AsyncSession instances
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "database"

    # =========================================================================
    # READS
    # =========================================================================

    async def get_business_config(self, business_id: str) -> BusinessConfig:
        async with self.session_maker() as session:
            row = await session.get(models.BusinessSettings, business_id)

        if row is None:
            raise BusinessNotFound(business_id)

        return BusinessConfig(
            business_id=row.business_id,
            currency=row.currency,
            min_order_cents=row.min_order_cents,
            delivery=DeliverySettings(
                model=row.delivery_model,
                flat_fee_cents=row.delivery_fee_cents or 0,
                base_fee_cents=row.delivery_base_fee_cents or 0,
                per_km_fee_cents=row.delivery_per_km_cents or 0,
                min_order_free_delivery_cents=row.min_order_free_delivery_cents,
                rounding=row.distance_rounding,
            ),
        )

    async def get_dishes(self, business_id: str, dish_ids: list[str]) -> dict[str, DishRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(models.Dish).where(
                    models.Dish.business_id == business_id,
                    models.Dish.id.in_(dish_ids),
                )
            )
            rows = result.scalars().all()

        return {
            row.id: DishRecord(
                id=row.id,
                business_id=row.business_id,
                name=row.name,
                price_cents=row.price_cents,
                is_available=row.is_available,
            )
            for row in rows
        }

    async def get_subscription_usage(self, business_id: str) -> SubscriptionUsage:
        try:
            async with self.session_maker() as session:
                row = await session.get(models.SubscriptionUsage, business_id)
        except SQLAlchemyError as e:
            logger.warning(f"Subscription usage read failed for business {business_id}: {e}")
            raise StoreUnavailableError("Subscription usage is temporarily unavailable") from e

        if row is None:
            return default_usage(business_id)

        return SubscriptionUsage(
            business_id=row.business_id,
            order_count=row.order_count,
            tier=row.tier,
            order_limit=row.order_limit,
        )

    async def find_coupon(self, business_id: str, code: str) -> Optional[CouponRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(models.Coupon).where(
                    models.Coupon.business_id == business_id,
                    models.Coupon.code == code.upper(),
                )
            )
            row = result.scalar_one_or_none()

        return coupon_from_row(row) if row is not None else None

    async def coupon_redemption_count(self, coupon_id: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(models.Coupon.usage_count).where(models.Coupon.id == coupon_id)
            )
            return result.scalar() or 0

    async def customer_redemption_count(self, coupon_id: str, customer_key: str) -> int:
        async with self.session_maker() as session:
            return await self._count_customer_redemptions(session, coupon_id, customer_key)

    @staticmethod
    async def _count_customer_redemptions(session: AsyncSession, coupon_id: str, customer_key: str) -> int:
        result = await session.execute(
            select(func.count(models.CouponRedemption.id)).where(
                models.CouponRedemption.coupon_id == coupon_id,
                models.CouponRedemption.customer_key == customer_key,
            )
        )
        return result.scalar() or 0

    # =========================================================================
    # ATOMIC COUNTERS
    # =========================================================================

    async def _ensure_usage_row(self, session: AsyncSession, business_id: str) -> None:
        # Businesses without a usage record start on the default tier
        fresh = default_usage(business_id)
        values = {
            "business_id": business_id,
            "tier": fresh.tier,
            "order_count": 0,
            "order_limit": fresh.order_limit,
        }
        dialect_insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if dialect_insert is None:
            if await session.get(models.SubscriptionUsage, business_id) is None:
                session.add(models.SubscriptionUsage(**values))
                await session.flush()
            return

        # A concurrent first order inserting the same row wins; ours is a no-op
        await session.execute(
            dialect_insert(models.SubscriptionUsage)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["business_id"])
        )

    async def _increment_usage(self, session: AsyncSession, business_id: str) -> None:
        await self._ensure_usage_row(session, business_id)

        usage = models.SubscriptionUsage
        result = await session.execute(
            update(usage)
            .where(usage.business_id == business_id)
            .where(
                or_(
                    usage.tier == SubscriptionTier.PRO,
                    usage.order_limit.is_(None),
                    usage.order_count < usage.order_limit,
                )
            )
            .values(order_count=usage.order_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            row = await session.get(usage, business_id)
            raise OrderLimitReached(row.order_count, row.order_limit)

    async def _redeem_coupon(
        self,
        session: AsyncSession,
        pricing: CouponPricing,
        order_id: str,
        customer_key: Optional[str],
    ) -> None:
        coupon = models.Coupon
        result = await session.execute(
            update(coupon)
            .where(coupon.id == pricing.coupon.id)
            .where(
                or_(
                    coupon.usage_limit_type != UsageLimitType.TOTAL,
                    coupon.usage_count < func.coalesce(coupon.total_usage_limit, 0),
                )
            )
            .values(usage_count=coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CouponRejected(
                CouponRejectionReason.USAGE_LIMIT_REACHED,
                "Coupon usage limit reached",
                {"limit": pricing.coupon.total_usage_limit},
            )

        per_customer = pricing.coupon.usage_limit_per_customer
        if (
            pricing.coupon.usage_limit_type == UsageLimitType.PER_CUSTOMER
            and per_customer is not None
            and customer_key
        ):
            used = await self._count_customer_redemptions(session, pricing.coupon.id, customer_key)
            if used >= per_customer:
                raise CouponRejected(
                    CouponRejectionReason.CUSTOMER_LIMIT_REACHED,
                    "You have already used this coupon",
                    {"limit": per_customer},
                )

        session.add(
            models.CouponRedemption(
                coupon_id=pricing.coupon.id,
                order_id=order_id,
                customer_key=customer_key,
                discount_cents=pricing.discount_cents,
            )
        )

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def commit_order(
        self,
        order: Order,
        coupon_pricing: Optional[CouponPricing] = None,
        customer_key: Optional[str] = None,
    ) -> Order:
        async with self.session_maker() as session:
            async with session.begin():
                await self._increment_usage(session, order.business_id)
                session.add(order_to_row(order))
                # Order row must exist before its redemption references it
                await session.flush()
                if coupon_pricing is not None:
                    await self._redeem_coupon(session, coupon_pricing, order.id, customer_key)

        logger.debug(f"Order {order.id} committed for business {order.business_id}")
        return order

    async def get_order(self, order_id: str) -> Order:
        async with self.session_maker() as session:
            row = await session.get(models.Order, order_id)
            if row is None:
                raise OrderNotFound(order_id)
            return order_from_row(row)

    async def update_order_status(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        at: datetime,
    ) -> Order:
        order = models.Order
        values = {"status": target, "updated_at": at}
        if target == OrderStatus.FULFILLED:
            values["fulfilled_at"] = func.coalesce(order.fulfilled_at, at)

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(order)
                    .where(order.id == order_id, order.status == expected)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    row = await session.get(order, order_id)
                    if row is None:
                        raise OrderNotFound(order_id)
                    raise InvalidTransition(row.status, target)

        return await self.get_order(order_id)

    async def list_orders(
        self,
        business_id: str,
        status: Optional[OrderStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Order]:
        query = select(models.Order).where(models.Order.business_id == business_id)
        if status is not None:
            query = query.where(models.Order.status == status)
        if start is not None:
            query = query.where(models.Order.created_at >= start)
        if end is not None:
            query = query.where(models.Order.created_at <= end)
        query = query.order_by(models.Order.created_at.desc())

        async with self.session_maker() as session:
            result = await session.execute(query)
            return [order_from_row(row) for row in result.scalars().all()]

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(select(1))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
