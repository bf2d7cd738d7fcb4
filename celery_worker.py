# celery_worker.py
from celery.schedules import crontab

from app import create_app
from celery_config import create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# The Flask app provides the context (db session, service registry) tasks run in.
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)

celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'refresh-expiring-credentials': {
        'task': 'tasks.credential_tasks.refresh_expiring_credentials',
        # Every 10 minutes, refreshing tokens that expire within 15 minutes
        'schedule': 600.0,
        'kwargs': {'within_minutes': 15}
    },
    'reconcile-duplicates': {
        'task': 'tasks.reconciliation_tasks.reconcile_duplicates',
        # Daily at 2 AM UTC
        'schedule': crontab(hour=2, minute=0),
    },
    'cleanup-webhook-events': {
        'task': 'tasks.reconciliation_tasks.cleanup_webhook_events',
        # Weekly on Sunday at 4 AM UTC
        'schedule': crontab(hour=4, minute=0, day_of_week=0),
        'kwargs': {'days_old': 30}
    },
}
celery.conf.timezone = 'UTC'

# Import tasks so they register with Celery
with flask_app.app_context():
    import tasks.credential_tasks  # noqa: F401
    import tasks.audience_tasks  # noqa: F401
    import tasks.reconciliation_tasks  # noqa: F401
    logger.info("Registered Celery tasks", tasks=sorted(t for t in celery.tasks if t.startswith('tasks.')))
