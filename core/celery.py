from celery import Celery
from core.config import settings

# Redis is both broker and result backend
broker_url = settings.REDIS_URL
backend_url = settings.REDIS_URL

celery_app = Celery(
    "climasite",
    broker=broker_url,
    backend=backend_url,
    include=["tasks.email_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    # Fail fast when the broker is unreachable so the web request can fall back to direct SMTP
    broker_connection_timeout=3,
    broker_connection_retry_on_startup=True,
    task_publish_retry=False,
    task_always_eager=False,
    task_eager_propagates=False,
)
