"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, plus the
beat schedule for the daily maintenance sweeps.
"""

from celery import Celery
from celery.schedules import crontab

from orderdesk.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'orderdesk_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['orderdesk.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result settings
    result_expires=3600,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,

    beat_schedule={
        'check-subscription-expirations': {
            'task': 'orderdesk.tasks.check_subscription_expirations',
            'schedule': crontab(hour=11, minute=0),
        },
        'suspend-inactive-companies': {
            'task': 'orderdesk.tasks.suspend_inactive_companies',
            'schedule': crontab(hour=3, minute=0),
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
