"""
Django settings for the keyvaluestore project.

The store itself is configured through ``KVSTORE`` (a dict, mostly used by
tests) or, when that is unset, the INI file named by ``KVSTORE_CONFIG_FILE``.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "keyvaluestore-insecure-development-key")

DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() == "true"

ALLOWED_HOSTS = os.environ.get("DJANGO_ALLOWED_HOSTS", "127.0.0.1,localhost,testserver").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "drf_spectacular",
    "storage.apps.StorageConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
]

ROOT_URLCONF = "keyvaluestore.urls"

WSGI_APPLICATION = "keyvaluestore.wsgi.application"

# Write bodies are stored verbatim whatever their size
DATA_UPLOAD_MAX_MEMORY_SIZE = None

# All state lives in memory
DATABASES = {}

USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "UNAUTHENTICATED_USER": None,
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Key-Value Store API",
    "DESCRIPTION": "In-memory key-value store gated by static read and write bearer tokens.",
    "VERSION": "1.0.0",
}

KVSTORE = None
KVSTORE_CONFIG_FILE = os.environ.get("KEYVALUESTORE_CONFIG", "keyvaluestore.ini")

LOG_LEVEL = os.environ.get("KEYVALUESTORE_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "storage": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
