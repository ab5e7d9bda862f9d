"""
Settings for the pytest run.

Fills in the environment the main settings module requires, then swaps the
external services for in-process ones: SQLite instead of PostgreSQL, local
memory cache instead of Redis, eager Celery instead of a broker.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///test.sqlite3")
os.environ.setdefault("DEBUG", "False")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")

from config.settings import *  # noqa: E402,F401,F403

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "relay-tests",
    }
}

CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

WEBHOOK_SECRET = "test-webhook-secret"
WEBHOOK_SERVICE_TOKEN = "test-service-token"
WEBHOOK_SERVICE_SECRETS = {"minu-find": "find-secret"}
WEBHOOK_MAX_WORKERS = 1

BILLING_GATEWAY_API_URL = "https://gateway.test/v1/billing"
BILLING_GATEWAY_SECRET_KEY = "test_sk_billing"
BILLING_WEBHOOK_URLS = []

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]
