"""
Celery configuration for the Site Import Service.

This module configures Celery for asynchronous task processing
with one task queue per pipeline stage (crawl, inference, migration).
"""

import os
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("site_importer")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Configure task queues for the pipeline stages
app.conf.task_queues = {
    "crawl": {
        "exchange": "crawl",
        "routing_key": "crawl",
    },
    "inference": {
        "exchange": "inference",
        "routing_key": "inference",
    },
    "migration": {
        "exchange": "migration",
        "routing_key": "migration",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

# Default task routing
app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

# Route specific tasks to their queues
app.conf.task_routes = {
    "importer.tasks.crawl_site": {"queue": "crawl"},
    "importer.tasks.generate_rules": {"queue": "inference"},
    "importer.tasks.migrate_*": {"queue": "migration"},
}
