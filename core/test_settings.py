import os

from django.core.management.utils import get_random_secret_key

from .settings import *  # noqa: F401,F403

# Deployments inject SECRET_KEY; test runs get a throwaway one
SECRET_KEY = os.environ.get("SECRET_KEY") or get_random_secret_key()

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
CELERY_TASK_ALWAYS_EAGER = False
