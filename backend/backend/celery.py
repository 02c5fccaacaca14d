import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.settings')

app = Celery('backend')

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing configuration – billing work runs on its own queue
app.conf.task_routes = {
    "billing.tasks.replay_webhook_log": {"queue": "billing"},
    "billing.tasks.cleanup_webhook_logs": {"queue": "billing"},

    # Default queue
    '*': {'queue': 'default'},
}

app.conf.task_default_queue = 'default'

app.conf.update(
    # Serialization settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone settings
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Queue settings
    task_queues={
        'default': {
            'exchange': 'default',
            'routing_key': 'default',
        },
        'billing': {
            'exchange': 'billing',
            'routing_key': 'billing',
        },
    },

    task_default_priority=5,
    task_ignore_result=False,
)

# Set task-specific limits
app.conf.task_annotations = {
    'billing.tasks.replay_webhook_log': {
        'rate_limit': '30/m',
        'time_limit': 120,
        'soft_time_limit': 90,
    },
    'billing.tasks.cleanup_webhook_logs': {
        'rate_limit': '1/h',
        'time_limit': 1800,
        'soft_time_limit': 1500,
    },
}

# Celery Beat schedule configuration
app.conf.beat_schedule = {
    "cleanup_webhook_logs_daily": {
        "task": "billing.tasks.cleanup_webhook_logs",
        "schedule": crontab(hour=4, minute=0),
        "options": {"queue": "billing"},
    },
}
