"""
Order Store Factory

Provides a single entry point for obtaining the order store.
Selects the SQLAlchemy store or the in-memory store based on the
ORDER_STORE_BACKEND configuration.

Usage:
    from menumaker.services.store import get_order_store

    store = get_order_store()
    order = await store.get_order(order_id)
"""

import logging
from functools import lru_cache

from menumaker.core.config import get_settings
from menumaker.services.store.base import BaseOrderStore
from menumaker.services.store.memory import InMemoryOrderStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_store() -> BaseOrderStore:
    """
    Get the configured order store instance.

    Returns:
        BaseOrderStore: SqlAlchemyOrderStore or InMemoryOrderStore
    """
    settings = get_settings()

    if settings.uses_database:
        from menumaker.database import async_session_maker
        from menumaker.services.store.sql import SqlAlchemyOrderStore

        logger.info("Order Store: Using SqlAlchemyOrderStore")
        return SqlAlchemyOrderStore(async_session_maker)

    logger.info(f"Order Store: Using InMemoryOrderStore ({settings.env_mode.value} mode)")
    return InMemoryOrderStore()


def reset_order_store() -> None:
    """
    Clear the cached order store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_order_store.cache_clear()
    logger.debug("Order store cache cleared")


__all__ = [
    "get_order_store",
    "reset_order_store",
    "BaseOrderStore",
    "InMemoryOrderStore",
]
