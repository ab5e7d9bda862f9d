"""
Celery configuration for the Relay service.

Runs two kinds of work outside the request cycle:
- Webhook delivery chains (webhooks.tasks.deliver_event)
- The daily billing pass and attempt cleanup, scheduled by celery-beat with
  django-celery-beat's DatabaseScheduler (see CELERY_BEAT_SCHEDULE)

Redis is both the message broker and the result backend. Tasks are
auto-discovered from every installed app's tasks.py.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import logging
import os

from celery import Celery
from celery.signals import task_failure

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("relay")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

logger = logging.getLogger(__name__)


@task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    """Log unhandled task exceptions with the task name and id."""
    logger.error(
        f"Task {getattr(sender, 'name', sender)} failed: {exception}",
        extra={"task_id": task_id},
    )
