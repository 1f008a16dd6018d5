"""
                        Services Module

Contains the ordering engine and its collaborators.

Services:
    - delivery: delivery fee calculation
    - coupons: coupon validation and discount pricing
    - quota: subscription quota decisions
    - state_machine: order status transitions
    - orders: order creation pipeline and status updates
    - store: order persistence (SQLAlchemy / in-memory)
    - events: post-commit event dispatch (Celery)
    - excel_manager: Thread-safe Excel ledger
"""

from menumaker.services.excel_manager import ExcelManager
from menumaker.services.orders import OrderCreationPipeline, OrderStatusService

__all__ = ["ExcelManager", "OrderCreationPipeline", "OrderStatusService"]
