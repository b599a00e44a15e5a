"""
Django settings for the resource planner project.

Everything deployment-specific is read from the environment so the same module
serves local development, tests and production.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-key")

DEBUG = os.environ.get("DJANGO_DEBUG", "true").lower() in ("1", "true", "yes")

ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "planning",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "planner.urls"

WSGI_APPLICATION = "planner.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("PLANNER_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-gb"
TIME_ZONE = os.environ.get("PLANNER_TIME_ZONE", "Europe/London")
USE_I18N = False
USE_TZ = True

# Planner rules shared by every report

# Evaluated top-down with strict ">" comparisons; below the last tier is "Underallocated".
PLANNER_ALLOCATION_THRESHOLDS = (
    (120, "Overallocated"),
    (90, "Full"),
    (50, "Balanced"),
)
PLANNER_RAG_AMBER_BUFFER = 3
PLANNER_DEFAULT_WINDOW_DAYS = 14
PLANNER_TIMEFRAME_DAYS = {"week": 7, "month": 30, "quarter": 90}
PLANNER_CALENDAR_WINDOW_DAYS = 30
PLANNER_DEFAULT_COUNTRY_CODE = os.environ.get("PLANNER_DEFAULT_COUNTRY_CODE", "GB")
PLANNER_IMPORT_MAX_BYTES = 10 * 1024 * 1024

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "planning": {
            "handlers": ["console"],
            "level": os.environ.get("PLANNER_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
