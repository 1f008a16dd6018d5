"""
Celery worker for post-commit order work

Runs the Excel ledger export and publishes order events to Redis.
Start with: celery -A menumaker.celery_worker worker --loglevel=info
"""

from celery import Celery

from menumaker.core.config import get_settings

REDIS_URL = get_settings().redis_url

celery_app = Celery(
    "menumaker_worker",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["menumaker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Ledger writes serialize on a file lock anyway
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    result_expires=3600,

    # A lost export must be retried, never dropped
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
