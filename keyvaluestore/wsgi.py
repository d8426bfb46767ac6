"""WSGI config for the keyvaluestore project."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "keyvaluestore.settings")

application = get_wsgi_application()
