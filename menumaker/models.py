"""
SQLAlchemy Database Models

Tables behind SqlAlchemyOrderStore:
- business_settings: delivery configuration, currency, minimum order
- dishes: menu dishes with current prices
- coupons / coupon_redemptions: discount codes and their usage
- subscription_usage: per-business order counter for the billing period
- orders / order_items: priced orders and their lines

Version: 1.0.0
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from menumaker.database import Base
from menumaker.domain import (
    DeliveryModel,
    DeliveryType,
    DiscountType,
    OrderStatus,
    RoundingPolicy,
    SubscriptionTier,
    UsageLimitType,
)


class BusinessSettings(Base):
    """Ordering configuration of one business."""
    __tablename__ = "business_settings"

    business_id = Column(String(36), primary_key=True)

    # =========================================================================
    # DELIVERY CONFIGURATION
    # =========================================================================
    delivery_model = Column(Enum(DeliveryModel), default=DeliveryModel.FLAT, nullable=False)
    delivery_fee_cents = Column(Integer, default=0, nullable=False)
    delivery_base_fee_cents = Column(Integer, default=0, nullable=False)
    delivery_per_km_cents = Column(Integer, default=0, nullable=False)
    min_order_free_delivery_cents = Column(Integer, nullable=True)
    distance_rounding = Column(Enum(RoundingPolicy), default=RoundingPolicy.ROUND, nullable=False)

    # =========================================================================
    # ORDER DEFAULTS
    # =========================================================================
    currency = Column(String(3), default="INR", nullable=False)
    min_order_cents = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<BusinessSettings {self.business_id} - {self.delivery_model.value}>"


class Dish(Base):
    __tablename__ = "dishes"

    id = Column(String(36), primary_key=True)
    business_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price_cents = Column(Integer, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Dish {self.id} - {self.name}>"


class Coupon(Base):
    """
    Discount code owned by a business.

    `usage_count` is the redemption counter guarded by commit_order.
    """
    __tablename__ = "coupons"
    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_coupons_business_code"),)

    id = Column(String(36), primary_key=True)
    business_id = Column(String(36), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=True)

    # =========================================================================
    # DISCOUNT
    # =========================================================================
    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Integer, nullable=False)
    max_discount_cents = Column(Integer, nullable=True)
    min_order_value_cents = Column(Integer, default=0, nullable=False)

    # =========================================================================
    # VALIDITY & USAGE LIMITS
    # =========================================================================
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    usage_limit_type = Column(Enum(UsageLimitType), default=UsageLimitType.UNLIMITED, nullable=False)
    total_usage_limit = Column(Integer, nullable=True)
    usage_limit_per_customer = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    redemptions = relationship("CouponRedemption", back_populates="coupon")

    def __repr__(self):
        return f"<Coupon {self.code} - {self.discount_type.value} {self.discount_value}>"


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    coupon_id = Column(String(36), ForeignKey("coupons.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    customer_key = Column(String(20), nullable=True, index=True)
    discount_cents = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    coupon = relationship("Coupon", back_populates="redemptions")


class SubscriptionUsage(Base):
    """
    Order counter of a business for the current billing period.

    `order_limit` is NULL for unlimited tiers. Reset at period rollover
    by the subscription service.
    """
    __tablename__ = "subscription_usage"

    business_id = Column(String(36), primary_key=True)
    tier = Column(Enum(SubscriptionTier), default=SubscriptionTier.FREE, nullable=False)
    order_count = Column(Integer, default=0, nullable=False)
    order_limit = Column(Integer, nullable=True)
    period_start = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<SubscriptionUsage {self.business_id} - {self.tier.value} {self.order_count}/{self.order_limit}>"


class Order(Base):
    """
    Main Order table - stores priced orders.

    Tracks the pricing breakdown and the lifecycle from creation to
    fulfilment or cancellation.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    business_id = Column(String(36), nullable=False, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=False, index=True)
    customer_email = Column(String(255), nullable=True)

    # =========================================================================
    # DELIVERY
    # =========================================================================
    delivery_type = Column(Enum(DeliveryType), default=DeliveryType.PICKUP, nullable=False)
    delivery_address = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING (integer cents)
    # =========================================================================
    subtotal_cents = Column(Integer, nullable=False)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    coupon_id = Column(String(36), ForeignKey("coupons.id"), nullable=True)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id",
    )

    def __repr__(self):
        return f"<Order {self.id} - {self.delivery_type.value} - {self.customer_name} - {self.status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (UniqueConstraint("order_id", "dish_id", name="uq_order_items_order_dish"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    dish_id = Column(String(36), nullable=False)
    dish_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    line_total_cents = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
