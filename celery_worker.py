# celery_worker.py
from app import create_app
from celery_config import create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# The Flask app provides context for tasks when they run.
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
from celery.schedules import crontab

celery.conf.beat_schedule = {
    'finalize-idle-sessions': {
        'task': 'tasks.session_tasks.finalize_idle_sessions',
        # Closes sessions idle past SESSION_INACTIVITY_MINUTES
        'schedule': float(flask_app.config.get('SESSION_CLEANUP_INTERVAL_SECONDS', 300)),
    },
    'sweep-inactive-deals': {
        'task': 'tasks.session_tasks.sweep_inactive_deals',
        # Once a day is enough for the 3-day and 7-day inactivity triggers
        'schedule': crontab(hour=6, minute=0),
    },
}
celery.conf.timezone = 'UTC'

# Import tasks to ensure they're registered with Celery
with flask_app.app_context():
    import tasks.session_tasks  # noqa: F401, E402
    logger.debug("Registered tasks", tasks=sorted(celery.tasks.keys()))
