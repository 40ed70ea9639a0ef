from celery import Celery
from celery.schedules import crontab

from app.configs.settings import settings

# Celery configuration
celery_app = Celery(
    'realestate_verification',
    broker=settings.CELERY_BROKER_URL,  # Redis as the message broker
    backend=settings.CELERY_RESULT_BACKEND,  # Redis as the result backend
    include=['app.tasks.otp_cleanup_tasks'],
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    worker_hijack_root_logger=False,
    task_time_limit=600,
    broker_connection_retry_on_startup=True,
    task_default_queue='default',
)

# Run tasks inline when debugging
celery_app.conf.task_always_eager = settings.CELERY_TASK_ALWAYS_EAGER

celery_app.conf.beat_schedule = {
    'purge-expired-otp-records-hourly': {
        'task': 'purge_expired_otp_records',
        'schedule': crontab(minute=15),
        'options': {'queue': 'default'},
    },
}
