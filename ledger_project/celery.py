"""
Celery configuration for the payment plan ledger
Runs the periodic overdue sweep
"""
import os

from celery import Celery
from celery.schedules import crontab

# Set default Django settings module for celery
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'ledger_project.settings')

app = Celery('ledger_project')

# Configure celery using Django settings (CELERY_* keys)
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all apps
app.autodiscover_tasks()

app.conf.task_routes = {
    'payment_plans.tasks.run_overdue_sweep': {'queue': 'ledger_maintenance'},
}

app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_hijack_root_logger=False,
    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
)

app.conf.task_default_queue = 'default'

# Hourly so agency cut-off times are picked up soon after they pass
app.conf.beat_schedule = {
    'overdue-installment-sweep': {
        'task': 'payment_plans.tasks.run_overdue_sweep',
        'schedule': crontab(minute=5),
        'options': {'queue': 'ledger_maintenance'}
    },
}
