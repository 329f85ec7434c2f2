from celery import Celery

from .core.config import Settings

settings = Settings()

celery = Celery(
    "catalog_service",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["catalog_service.tasks"],
)

celery.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_default_queue='catalog_queue',
    task_routes={
        'catalog_service.tasks.*': {'queue': 'catalog_queue'}
    }
)

# Beat schedule: periodic sampling of cached products against the store
celery.conf.beat_schedule = {
    'check-cache-consistency': {
        'task': 'catalog_service.tasks.check_cache_consistency',
        'schedule': float(settings.consistency_check_interval),
    },
}
