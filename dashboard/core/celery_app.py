import logging
from celery import Celery
from celery.signals import after_setup_logger, after_setup_task_logger
from dashboard.core.config import settings

# --- 1. Initialize Celery ---
# Redis is both the broker and the result store for broadcast runs.
celery_app = Celery(
    "dashboard",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["dashboard.service.broadcast_worker"]
)

# --- 2. Configuration ---
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A broadcast can run for minutes; one at a time per worker process
    worker_prefetch_multiplier=1,
    # Redelivered runs skip recipients that already have a stored message
    task_acks_late=True,
    result_expires=24 * 3600,
    broker_connection_retry_on_startup=True
)

# --- 3. Logging Setup ---
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

@after_setup_logger.connect
@after_setup_task_logger.connect
def setup_celery_logger(logger, *args, **kwargs):
    """Worker and task logs share the uvicorn-style format used by the API."""
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger("celery.worker").setLevel(logging.INFO)

if __name__ == "__main__":
    celery_app.start()
