"""
Celery Tasks
Background work triggered after an order is committed or changes status.
"""

import json
import logging
import time
from datetime import datetime

import redis

from menumaker.celery_worker import celery_app
from menumaker.core.config import get_settings
from menumaker.services.excel_manager import ExcelManager, LedgerExportError

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_order_to_excel(self, order_data: dict) -> dict:
    """
    Append a created order to the Excel ledger.

    Args:
        order_data: Ledger row produced by `ledger_row`

    Returns:
        dict: Result of the export operation

    Raises:
        LedgerExportError: Ledger not written (lock timeout), so the task retries
    """
    task_id = self.request.id
    order_id = order_data.get("order_id", "unknown")

    logger.info(f"📋 Task {task_id}: Exporting order {order_id}")
    start_time = time.time()

    result = ExcelManager.export_order(order_data)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if not result["success"]:
        logger.warning(f"⚠️ Task {task_id}: Order {order_id} failed - {result['message']}")
        raise LedgerExportError(result["message"])

    logger.info(f"✅ Task {task_id}: Order {order_id} exported in {elapsed}s")
    return result


@celery_app.task(
    bind=True,
    max_retries=5,
    autoretry_for=(redis.RedisError,),
    retry_backoff=True
)
def publish_order_event(self, event: str, payload: dict) -> dict:
    """
    Publish an order lifecycle event on the Redis events channel.

    Subscribers (notification service, kitchen displays) deliver the
    customer-facing messages.

    Args:
        event: Event name, e.g. "order.created", "order.confirmed"
        payload: JSON-serializable event body
    """
    settings = get_settings()
    message = json.dumps({
        "event": event,
        "payload": payload,
        "published_at": datetime.now().isoformat(),
    })

    client = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
    try:
        receivers = client.publish(settings.order_events_channel, message)
    finally:
        client.close()

    logger.info(f"📣 {event} published to {receivers} subscriber(s)")
    return {"event": event, "receivers": receivers}


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now().isoformat()
    }
