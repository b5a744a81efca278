"""
Test settings for the Site Import Service.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

import tempfile
from pathlib import Path

from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Test Cache - use local memory cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["importer"]["level"] = "WARNING"

# Password validators disabled for faster tests
AUTH_PASSWORD_VALIDATORS = []

# Use faster password hasher for tests
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Disable Sentry in tests
SENTRY_DSN = ""

# Downloaded media goes to a throwaway directory
MEDIA_ROOT = Path(tempfile.mkdtemp(prefix="importer-media-"))

# Test importer settings - fail fast, no politeness delay
IMPORTER_REQUEST_TIMEOUT = 5
IMPORTER_MAX_RETRIES = 0
IMPORTER_CRAWL_DELAY = 0
AI_SERVICE_TOKEN = "test-token"
